"""Server metadata snapshot and capability checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..exceptions import LXCInfraError, TerminalError

INCUS = "incus"
LXD = "lxd"

# Control socket of each server implementation, as seen from the host.
DEFAULT_UNIX_SOCKET_PATHS = {
    LXD: "/var/snap/lxd/common/lxd/unix.socket",
    INCUS: "/var/lib/incus/unix.socket",
}


@dataclass(frozen=True)
class ServerInfo:
    """Capabilities of the remote server, fetched once per connection."""

    server_name: str = "unknown"
    server_version: str = ""
    api_extensions: frozenset[str] = field(default_factory=frozenset)
    driver: str = ""
    architectures: tuple[str, ...] = ()
    clustered: bool = False

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any]) -> ServerInfo:
        env = metadata.get("environment") or {}
        server = env.get("server", "")
        return cls(
            server_name=server if server in (INCUS, LXD) else "unknown",
            server_version=env.get("server_version", ""),
            api_extensions=frozenset(metadata.get("api_extensions") or []),
            driver=env.get("driver", ""),
            architectures=tuple(env.get("architectures") or []),
            clustered=bool(env.get("server_clustered", False)),
        )

    def require_extensions(self, *extensions: str) -> None:
        """Raise TerminalError listing every extension the server does not advertise."""
        missing = sorted(set(extensions) - self.api_extensions)
        if missing:
            raise TerminalError(f"required extensions {missing} are not supported")

    def supports_instance_oci(self) -> None:
        self.require_extensions("instance_oci", "instance_oci_entrypoint")

    def supports_network_load_balancers(self) -> None:
        self.require_extensions("network_load_balancer", "network_load_balancer_health_check")

    def supports_container_disk_tmpfs(self) -> None:
        self.require_extensions("container_disk_tmpfs")

    def supports_instance_kvm(self) -> None:
        if "qemu" not in [d.strip() for d in self.driver.split("|")]:
            raise TerminalError(f"server is missing driver qemu, supported drivers are: {self.driver!r}")

    def supports_instance_target(self) -> None:
        # Not terminal: a standalone server may later join a cluster.
        if not self.clustered:
            raise LXCInfraError("server is not part of a cluster")

    def default_unix_socket_path(self) -> str:
        try:
            return DEFAULT_UNIX_SOCKET_PATHS[self.server_name]
        except KeyError:
            raise TerminalError(f"unknown default unix socket path for server {self.server_name!r}") from None
