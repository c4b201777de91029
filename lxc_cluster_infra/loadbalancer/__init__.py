"""Control plane load balancer strategies."""

from __future__ import annotations

from .backends import BackendServer, BackendView, ClusterIdentity, get_backend_view
from .external import ExternalManager
from .haproxy_config import render_haproxy_config
from .instance import LXCManager, OCIManager
from .kube_vip import KubeVIPManager
from .manager import Manager, manager_for_cluster
from .ovn import OVNManager

__all__ = [
    "BackendServer",
    "BackendView",
    "ClusterIdentity",
    "ExternalManager",
    "KubeVIPManager",
    "LXCManager",
    "Manager",
    "OCIManager",
    "OVNManager",
    "get_backend_view",
    "manager_for_cluster",
    "render_haproxy_config",
]
