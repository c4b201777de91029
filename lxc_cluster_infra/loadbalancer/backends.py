"""Cluster identity labels and discovery of control plane backends."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any

from ..context import Context
from ..lxc.filters import ListFilter, parse_host_addresses
from ..lxc.lifecycle import InstanceLifecycle

CLUSTER_NAME_KEY = "user.cluster-name"
CLUSTER_NAMESPACE_KEY = "user.cluster-namespace"
CLUSTER_ROLE_KEY = "user.cluster-role"

ROLE_CONTROL_PLANE = "control-plane"
ROLE_LOAD_BALANCER = "loadbalancer"

DEFAULT_BACKEND_WEIGHT = 100
DEFAULT_CONTROL_PLANE_PORT = 6443


@dataclass(frozen=True)
class ClusterIdentity:
    name: str
    namespace: str = "default"

    def labels(self, role: str | None = None) -> dict[str, str]:
        """Config keys every instance (and load balancer object) of the cluster carries."""
        labels = {CLUSTER_NAME_KEY: self.name, CLUSTER_NAMESPACE_KEY: self.namespace}
        if role:
            labels[CLUSTER_ROLE_KEY] = role
        return labels

    def owns(self, config: dict[str, Any] | None) -> bool:
        config = config or {}
        return config.get(CLUSTER_NAME_KEY) == self.name and config.get(CLUSTER_NAMESPACE_KEY) == self.namespace

    def load_balancer_instance_name(self) -> str:
        # Instance names are capped at 63 characters, so the namespace is hashed
        digest = hashlib.sha256(self.namespace.encode()).hexdigest()[:5]
        return f"{self.name}-{digest}-lb"


@dataclass(frozen=True)
class BackendServer:
    name: str
    address: str
    weight: int = DEFAULT_BACKEND_WEIGHT


@dataclass(frozen=True)
class BackendView:
    """Backends of the control plane load balancer, sorted by instance name."""

    frontend_port: int = DEFAULT_CONTROL_PLANE_PORT
    backend_port: int = DEFAULT_CONTROL_PLANE_PORT
    servers: tuple[BackendServer, ...] = ()

    @property
    def addresses(self) -> list[str]:
        return [s.address for s in self.servers]

    def summary(self) -> dict[str, str]:
        """name -> address, for log output."""
        return {s.name: s.address for s in self.servers}


def get_backend_view(
    ctx: Context,
    lifecycle: InstanceLifecycle,
    cluster: ClusterIdentity,
    role: str = ROLE_CONTROL_PLANE,
    *,
    frontend_port: int = DEFAULT_CONTROL_PLANE_PORT,
    backend_port: int = DEFAULT_CONTROL_PLANE_PORT,
) -> BackendView:
    """List the cluster's instances with ``role`` and build the current backend set.

    Instances that do not report an address yet are left out.
    """
    instances = lifecycle.list_instances(ctx, ListFilter.with_config(cluster.labels(role)))

    servers = []
    for instance in instances:
        addresses = parse_host_addresses(instance.get("state"))
        if not addresses:
            ctx.log.debug("Skipping instance without address", extra={"instance": instance.get("name")})
            continue
        # TODO: prefer one address family once dual-stack control planes are supported
        servers.append(BackendServer(name=instance["name"], address=addresses[0]))

    servers.sort(key=lambda s: s.name)
    return BackendView(frontend_port=frontend_port, backend_port=backend_port, servers=tuple(servers))
