"""Load balancer backed by a network load balancer object on an OVN network."""

from __future__ import annotations

from typing import Any

from ..config import TimeoutsConfig
from ..context import Context
from ..exceptions import (
    LoadBalancerConflict,
    LXCInfraError,
    NotFoundError,
    OperationCancelled,
    TerminalError,
    wrap_error,
)
from ..lxc.client import LXCClient
from ..lxc.lifecycle import InstanceLifecycle
from .backends import (
    CLUSTER_NAME_KEY,
    CLUSTER_NAMESPACE_KEY,
    DEFAULT_CONTROL_PLANE_PORT,
    BackendView,
    ClusterIdentity,
    get_backend_view,
)
from .manager import Manager, add_info

HEALTH_CHECK_CONFIG = {
    "healthcheck": "true",
    "healthcheck.interval": "5",
    "healthcheck.timeout": "5",
    "healthcheck.failure_count": "3",
    "healthcheck.success_count": "2",
}


class OVNManager(Manager):
    """Manages the network load balancer listening on the control plane endpoint address."""

    def __init__(
        self,
        client: LXCClient,
        cluster: ClusterIdentity,
        network_name: str,
        listen_address: str,
        timeouts: TimeoutsConfig | None = None,
        *,
        frontend_port: int = DEFAULT_CONTROL_PLANE_PORT,
        backend_port: int = DEFAULT_CONTROL_PLANE_PORT,
    ):
        self._client = client
        self._cluster = cluster
        self.network_name = network_name
        self.listen_address = listen_address
        self._timeouts = timeouts or TimeoutsConfig()
        self._frontend_port = frontend_port
        self._backend_port = backend_port
        self._lifecycle = InstanceLifecycle(client, self._timeouts)

    def _ctx(self, ctx: Context) -> Context:
        return ctx.with_values(network=self.network_name, listen_address=self.listen_address)

    def create(self, ctx: Context) -> list[str]:
        ctx = self._ctx(ctx)

        if not self.network_name:
            raise TerminalError("network load balancer cannot be provisioned as load_balancer.ovn.network_name is not set")

        try:
            self._client.supports_network_load_balancers()
        except LXCInfraError as exc:
            raise wrap_error("server does not support network load balancers", exc) from exc

        try:
            self._client.get_network(self.network_name)
        except NotFoundError as exc:
            raise TerminalError(f"failed to check network {self.network_name!r}: {exc}") from exc

        try:
            existing = self._client.get_network_load_balancer(self.network_name, self.listen_address)
        except NotFoundError:
            existing = None

        if existing is not None:
            self._check_owner(existing)
            ctx.log.debug("Network load balancer already exists")
            return [self.listen_address]

        ctx.log.info("Creating network load balancer")
        self._client.create_network_load_balancer(
            self.network_name,
            {"listen_address": self.listen_address, "config": self._cluster.labels()},
        )
        return [self.listen_address]

    def delete(self, ctx: Context) -> None:
        ctx = self._ctx(ctx)
        ctx.log.info("Deleting network load balancer")
        try:
            self._client.delete_network_load_balancer(self.network_name, self.listen_address)
        except NotFoundError:
            ctx.log.debug("Network load balancer does not exist")

    def reconfigure(self, ctx: Context) -> None:
        ctx = self._ctx(ctx.with_timeout(self._timeouts.load_balancer_reconfigure))
        try:
            view = get_backend_view(
                ctx,
                self._lifecycle,
                self._cluster,
                frontend_port=self._frontend_port,
                backend_port=self._backend_port,
            )
            # A missing object stays a transient error; only create() makes one.
            self._check_owner(self._client.get_network_load_balancer(self.network_name, self.listen_address))
            ctx.log.info("Updating network load balancer", extra={"servers": view.summary()})
            self._client.update_network_load_balancer(self.network_name, self.listen_address, self.desired_state(view))
        except (OperationCancelled, LoadBalancerConflict):
            raise
        except LXCInfraError as exc:
            raise wrap_error("failed to update network load balancer", exc) from exc

    def _check_owner(self, existing: dict[str, Any]) -> None:
        """Raise LoadBalancerConflict unless ``existing`` carries this cluster's labels."""
        if not self._cluster.owns(existing.get("config")):
            raise LoadBalancerConflict(
                f"conflict: a LoadBalancer with IP {self.listen_address} already exists without the required keys "
                f"{CLUSTER_NAME_KEY}={self._cluster.name} and {CLUSTER_NAMESPACE_KEY}={self._cluster.namespace}"
            )

    def desired_state(self, view: BackendView) -> dict[str, Any]:
        """Full replacement body for the load balancer, backends sorted by name."""
        servers = sorted(view.servers, key=lambda s: s.name)
        return {
            "description": "",
            "config": {**self._cluster.labels(), **HEALTH_CHECK_CONFIG},
            "backends": [
                {
                    "name": s.name,
                    "description": "",
                    "target_address": s.address,
                    "target_port": str(view.backend_port),
                }
                for s in servers
            ],
            "ports": [
                {
                    "description": "",
                    "listen_port": str(view.frontend_port),
                    "protocol": "tcp",
                    "target_backend": [s.name for s in servers],
                },
            ],
        }

    def control_plane_instance_templates(self, control_plane_initialized: bool) -> dict[str, str]:
        return {}

    def inspect(self, ctx: Context) -> dict[str, str]:
        result: dict[str, str] = {}
        network = add_info(result, "Network", lambda: self._client.get_network(self.network_name))
        uplink = ((network or {}).get("config") or {}).get("network")
        if uplink:
            add_info(result, "UplinkNetwork", lambda: self._client.get_network(uplink))
        add_info(
            result,
            "NetworkLoadBalancer",
            lambda: self._client.get_network_load_balancer(self.network_name, self.listen_address),
        )
        add_info(
            result,
            "NetworkLoadBalancerState",
            lambda: self._client.get_network_load_balancer_state(self.network_name, self.listen_address),
        )
        return result
