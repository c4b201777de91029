"""Shared fixtures: an LXCClient pointed at a fake HTTPS server."""

import pytest
import requests
from lxd_api import ALL_EXTENSIONS, BASE

from lxc_cluster_infra.config import TimeoutsConfig
from lxc_cluster_infra.context import Context
from lxc_cluster_infra.lxc.client import LXCClient
from lxc_cluster_infra.lxc.lifecycle import InstanceLifecycle
from lxc_cluster_infra.lxc.server_info import ServerInfo


@pytest.fixture
def server_info():
    return ServerInfo(
        server_name="incus",
        server_version="6.0.0",
        api_extensions=ALL_EXTENSIONS,
        driver="lxc | qemu",
        architectures=("x86_64", "i686"),
        clustered=False,
    )


@pytest.fixture
def client(server_info):
    return LXCClient(requests.Session(), BASE, server_info, operation_poll_interval=0.01)


@pytest.fixture
def timeouts():
    return TimeoutsConfig(operation_poll_interval=0.01, address_poll_interval=0.01)


@pytest.fixture
def lifecycle(client, timeouts):
    return InstanceLifecycle(client, timeouts)


@pytest.fixture
def ctx():
    return Context.background()
