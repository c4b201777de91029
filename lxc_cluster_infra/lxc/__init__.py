"""LXD/Incus client, image resolution, launch specs and instance lifecycle."""

from __future__ import annotations

from .client import InstanceFile, LXCClient
from .filters import ListFilter, parse_host_addresses
from .images import CapnImage, Image, KindestNodeImage, parse_oci_image
from .launch_spec import CONTAINER, VIRTUAL_MACHINE, LaunchSpec
from .lifecycle import CommandResult, InstanceLifecycle
from .server_info import INCUS, LXD, ServerInfo

__all__ = [
    "CONTAINER",
    "INCUS",
    "LXD",
    "VIRTUAL_MACHINE",
    "CapnImage",
    "CommandResult",
    "Image",
    "InstanceFile",
    "InstanceLifecycle",
    "KindestNodeImage",
    "LXCClient",
    "LaunchSpec",
    "ListFilter",
    "ServerInfo",
    "parse_host_addresses",
    "parse_oci_image",
]
