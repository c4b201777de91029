"""Load balancer manager interface and strategy selection."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import yaml

from ..config import EndpointConfig, LoadBalancerConfig, TimeoutsConfig
from ..context import Context
from ..exceptions import LXCInfraError
from ..lxc.client import LXCClient
from .backends import ClusterIdentity


class Manager(ABC):
    """Keeps the control plane endpoint of one cluster pointed at its live control plane instances.

    Errors for which retrying cannot help (missing server extensions, a
    conflicting load balancer object, missing configuration) are raised as
    TerminalError; check with ``is_terminal_error``.
    """

    @abstractmethod
    def create(self, ctx: Context) -> list[str]:
        """Provision the load balancer and return its addresses."""

    @abstractmethod
    def delete(self, ctx: Context) -> None:
        """Remove every load balancer resource. Succeeds if nothing exists."""

    @abstractmethod
    def reconfigure(self, ctx: Context) -> None:
        """Point the load balancer at the currently running control plane instances."""

    @abstractmethod
    def control_plane_instance_templates(self, control_plane_initialized: bool) -> dict[str, str]:
        """Files (path -> contents) to inject as templates into new control plane instances."""

    @abstractmethod
    def inspect(self, ctx: Context) -> dict[str, str]:
        """Diagnostic dump of the load balancer state. Never raises."""


def add_info(result: dict[str, str], name: str, getter: Callable[[], Any]) -> Any:
    """Store ``getter()`` as ``<name>.yaml``, or the error as ``<name>.err``."""
    try:
        obj = getter()
    except LXCInfraError as exc:
        result[f"{name}.err"] = f"failed to get {name}: {exc}"
        return None
    result[f"{name}.yaml"] = yaml.safe_dump(obj, default_flow_style=False, sort_keys=True)
    return obj


def manager_for_cluster(
    client: LXCClient,
    cluster: ClusterIdentity,
    config: LoadBalancerConfig,
    endpoint: EndpointConfig,
    timeouts: TimeoutsConfig | None = None,
) -> Manager:
    """Return the Manager for the declared load balancer strategy.

    Without a declared strategy the endpoint is assumed to be managed externally.
    """
    from .external import ExternalManager
    from .instance import LXCManager, OCIManager
    from .kube_vip import KubeVIPManager
    from .ovn import OVNManager

    timeouts = timeouts or TimeoutsConfig()
    ports = {"frontend_port": config.frontend_port, "backend_port": config.backend_port}

    if config.lxc is not None:
        return LXCManager(client, cluster, config.lxc, timeouts, **ports)
    if config.oci is not None:
        return OCIManager(client, cluster, config.oci, timeouts, **ports)
    if config.ovn is not None:
        return OVNManager(client, cluster, config.ovn.network_name, endpoint.host, timeouts, **ports)
    if config.kube_vip is not None:
        return KubeVIPManager(config.kube_vip, endpoint)
    return ExternalManager(endpoint.host)
