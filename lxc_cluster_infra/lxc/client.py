"""REST client for the LXD/Incus API."""

from __future__ import annotations

import copy
import hashlib
import logging
import os
import ssl
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import requests
import requests_unixsocket
from requests.adapters import HTTPAdapter

from ..config import LXCConfig
from ..context import Context
from ..exceptions import (
    AlreadyExistsError,
    ConfigError,
    DeadlineExceeded,
    LXCAPIError,
    NotFoundError,
)
from .operations import Operation
from .server_info import LXD, ServerInfo

logger = logging.getLogger(__name__)

# Tried in order when the server URL is a bare "unix://".
UNIX_SOCKET_CANDIDATES = (
    "/var/lib/incus/unix.socket",
    "/run/incus/unix.socket",
    "/var/snap/lxd/common/lxd/unix.socket",
    "/run-unix.socket",
)


def find_default_unix_socket_path() -> str:
    """Return the first existing and writable local control socket."""
    errors = []
    for path in UNIX_SOCKET_CANDIDATES:
        if not os.path.exists(path):
            errors.append(f"{path!r} does not exist")
        elif not os.access(path, os.W_OK):
            errors.append(f"{path!r} is not writeable")
        else:
            return path
    raise ConfigError(f"failed to detect default local unix socket path: {'; '.join(errors)}")


def cert_fingerprint(pem: str) -> str:
    """SHA-256 fingerprint (hex) of a PEM encoded certificate."""
    return hashlib.sha256(ssl.PEM_cert_to_DER_cert(pem)).hexdigest()


class _PinnedCertAdapter(HTTPAdapter):
    """HTTPS adapter that accepts exactly one server certificate, by fingerprint."""

    def __init__(self, fingerprint: str, **kwargs: Any):
        self._fingerprint = fingerprint
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs["assert_fingerprint"] = self._fingerprint
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)


@dataclass(frozen=True)
class InstanceFile:
    """A file read from inside an instance, with its ownership and mode."""

    content: bytes
    uid: int = 0
    gid: int = 0
    mode: int = 0o644
    type: str = "file"


class LXCClient:
    """Thin wrapper around the LXD/Incus REST API (``/1.0``).

    Use :meth:`connect` to build a client; it fetches the server metadata
    exactly once and every capability query is answered from that snapshot.
    """

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        server_info: ServerInfo,
        *,
        project: str = "",
        target: str = "",
        timeout: int = 30,
        operation_poll_interval: float = 1.0,
    ):
        self._session = session
        self._base = base_url.rstrip("/")
        self.server_info = server_info
        self.project = project
        self.target = target
        self._timeout = timeout
        self.operation_poll_interval = operation_poll_interval

    @classmethod
    def connect(cls, config: LXCConfig, operation_poll_interval: float = 1.0) -> LXCClient:
        """Open a session to the server and fetch its metadata."""
        session = requests.Session()
        session.headers["Content-Type"] = "application/json"

        if config.server.startswith("https://"):
            base_url = config.server
            session.cert = (config.client_crt, config.client_key)
            if config.insecure_skip_verify:
                session.verify = False
            elif config.server_crt:
                fingerprint = cert_fingerprint(Path(config.server_crt).read_text())
                session.verify = False
                session.mount("https://", _PinnedCertAdapter(fingerprint))
                logger.debug("Pinning server certificate %s", fingerprint[:12])
        elif config.server.startswith("unix://"):
            socket_path = config.server[len("unix://"):] or find_default_unix_socket_path()
            base_url = "http+unix://" + quote(socket_path, safe="")
            session.mount("http+unix://", requests_unixsocket.UnixAdapter())
        else:
            raise ConfigError(f"server {config.server!r} is not unix:// or https://")

        client = cls(
            session,
            base_url,
            ServerInfo(),
            project=config.project,
            timeout=config.timeout,
            operation_poll_interval=operation_poll_interval,
        )
        try:
            metadata = client.get_server()
        except LXCAPIError as exc:
            raise LXCAPIError(
                f"failed to retrieve server information: {exc}",
                status_code=exc.status_code,
                response_body=exc.response_body,
            ) from exc
        client.server_info = ServerInfo.from_metadata(metadata)

        logger.info(
            "Initialized client",
            extra={"lxc_server": config.server, "project": config.project or None},
        )
        return client

    def with_target(self, target: str) -> LXCClient:
        """Return a copy that places new instances on a cluster member (or "@group").

        Ignored when the server is not clustered.
        """
        if not target or not self.server_info.clustered:
            return self
        clone = copy.copy(self)
        clone.target = target
        return clone

    # ── Server and capabilities ─────────────────────────────────────

    @property
    def server_name(self) -> str:
        """One of "incus", "lxd" or "unknown"."""
        return self.server_info.server_name

    def get_server(self) -> dict[str, Any]:
        return self._sync("GET", "/1.0")

    def supports_instance_oci(self) -> None:
        self.server_info.supports_instance_oci()

    def supports_network_load_balancers(self) -> None:
        self.server_info.supports_network_load_balancers()

    def supports_container_disk_tmpfs(self) -> None:
        self.server_info.supports_container_disk_tmpfs()

    def supports_instance_kvm(self) -> None:
        self.server_info.supports_instance_kvm()

    def supports_instance_target(self) -> None:
        self.server_info.supports_instance_target()

    def supported_architectures(self) -> list[str]:
        return list(self.server_info.architectures)

    # ── Operations ──────────────────────────────────────────────────

    def get_operation(self, operation_id: str) -> dict[str, Any]:
        return self._sync("GET", f"/1.0/operations/{quote(operation_id, safe='')}")

    def list_operations(self) -> list[dict[str, Any]]:
        """Return all operations known to the server, regardless of status."""
        by_status = self._sync("GET", "/1.0/operations", params={"recursion": 1}) or {}
        return [op for ops in by_status.values() for op in (ops or [])]

    def wait_for_operation(
        self,
        ctx: Context,
        kind: str,
        submit: Callable[[], Operation | None],
    ) -> dict[str, Any]:
        """Submit a mutating call and, if it returned an operation, wait for it.

        Returns the final operation metadata, or an empty dict for calls that
        completed synchronously.
        """
        op = submit()
        if op is None:
            return {}
        try:
            return op.wait(ctx, self.operation_poll_interval)
        except DeadlineExceeded as exc:
            raise DeadlineExceeded(f"timed out waiting for {kind} operation {op.id}") from exc

    # ── Instances ───────────────────────────────────────────────────

    def list_instances(self) -> list[dict[str, Any]]:
        """Return every instance in the project, including its state."""
        return self._sync("GET", "/1.0/instances", params={"recursion": 2}) or []

    def get_instance(self, name: str) -> dict[str, Any]:
        return self._sync("GET", self._instance_path(name))

    def get_instance_full(self, name: str) -> dict[str, Any]:
        return self._sync("GET", self._instance_path(name), params={"recursion": 1})

    def get_instance_state(self, name: str) -> dict[str, Any]:
        return self._sync("GET", f"{self._instance_path(name)}/state")

    def create_instance(self, body: dict[str, Any]) -> Operation | None:
        params = {"target": self.target} if self.target else None
        return self._submit("CreateInstance", "POST", "/1.0/instances", json=body, params=params)

    def update_instance_state(self, name: str, action: str, force: bool = False) -> Operation | None:
        body = {"action": action, "force": force, "timeout": -1}
        return self._submit(f"{action.capitalize()}Instance", "PUT", f"{self._instance_path(name)}/state", json=body)

    def delete_instance(self, name: str) -> Operation | None:
        return self._submit("DeleteInstance", "DELETE", self._instance_path(name))

    # ── Instance files and metadata ─────────────────────────────────

    def get_instance_file(self, name: str, path: str) -> InstanceFile:
        resp = self._request("GET", f"{self._instance_path(name)}/files", params={"path": path})
        return InstanceFile(
            content=resp.content,
            uid=int(self._file_header(resp, "uid") or 0),
            gid=int(self._file_header(resp, "gid") or 0),
            mode=int(self._file_header(resp, "mode") or "0644", 8),
            type=self._file_header(resp, "type") or "file",
        )

    def create_instance_file(
        self,
        name: str,
        path: str,
        content: bytes | str = b"",
        *,
        uid: int = 0,
        gid: int = 0,
        mode: int = 0o644,
        file_type: str = "file",
        write_mode: str = "overwrite",
    ) -> None:
        if isinstance(content, str):
            content = content.encode()
        prefix = self._file_header_prefix()
        headers = {
            "Content-Type": "application/octet-stream",
            f"{prefix}uid": str(uid),
            f"{prefix}gid": str(gid),
            f"{prefix}mode": f"{mode:04o}",
            f"{prefix}type": file_type,
        }
        if file_type == "file":
            headers[f"{prefix}write"] = write_mode
        self._request("POST", f"{self._instance_path(name)}/files", params={"path": path}, data=content, headers=headers)

    def get_instance_metadata(self, name: str) -> dict[str, Any]:
        return self._sync("GET", f"{self._instance_path(name)}/metadata") or {}

    def update_instance_metadata(self, name: str, metadata: dict[str, Any]) -> None:
        self._request("PUT", f"{self._instance_path(name)}/metadata", json=metadata)

    def create_instance_template_file(self, name: str, template_name: str, content: bytes | str) -> None:
        if isinstance(content, str):
            content = content.encode()
        self._request(
            "POST",
            f"{self._instance_path(name)}/metadata/templates",
            params={"path": template_name},
            data=content,
            headers={"Content-Type": "application/octet-stream"},
        )

    # ── Exec ────────────────────────────────────────────────────────

    def execute(self, name: str, command: list[str], environment: dict[str, str] | None = None) -> Operation | None:
        body = {
            "command": command,
            "environment": environment or {},
            "wait-for-websocket": False,
            "interactive": False,
            "record-output": True,
        }
        return self._submit("ExecInstance", "POST", f"{self._instance_path(name)}/exec", json=body)

    def get_log(self, path: str) -> str:
        """Download a log file by the absolute API path the server reported (e.g. exec output)."""
        return self._request("GET", path).text

    # ── Networks and network load balancers ─────────────────────────

    def get_network(self, name: str) -> dict[str, Any]:
        return self._sync("GET", f"/1.0/networks/{quote(name, safe='')}")

    def get_network_load_balancer(self, network: str, listen_address: str) -> dict[str, Any]:
        return self._sync("GET", self._load_balancer_path(network, listen_address))

    def get_network_load_balancer_state(self, network: str, listen_address: str) -> dict[str, Any]:
        return self._sync("GET", f"{self._load_balancer_path(network, listen_address)}/state")

    def create_network_load_balancer(self, network: str, body: dict[str, Any]) -> None:
        self._request("POST", f"/1.0/networks/{quote(network, safe='')}/load-balancers", json=body)

    def update_network_load_balancer(self, network: str, listen_address: str, body: dict[str, Any]) -> None:
        self._request("PUT", self._load_balancer_path(network, listen_address), json=body)

    def delete_network_load_balancer(self, network: str, listen_address: str) -> None:
        self._request("DELETE", self._load_balancer_path(network, listen_address))

    # ── Storage ─────────────────────────────────────────────────────

    def get_storage_pools(self) -> list[dict[str, Any]]:
        return self._sync("GET", "/1.0/storage-pools", params={"recursion": 1}) or []

    # ── Internal HTTP helpers ───────────────────────────────────────

    @staticmethod
    def _instance_path(name: str) -> str:
        return f"/1.0/instances/{quote(name, safe='')}"

    @staticmethod
    def _load_balancer_path(network: str, listen_address: str) -> str:
        return f"/1.0/networks/{quote(network, safe='')}/load-balancers/{quote(listen_address, safe='')}"

    def _file_header_prefix(self) -> str:
        return "X-LXD-" if self.server_name == LXD else "X-Incus-"

    @staticmethod
    def _file_header(resp: requests.Response, key: str) -> str | None:
        return resp.headers.get(f"X-Incus-{key}") or resp.headers.get(f"X-LXD-{key}")

    def _sync(self, method: str, path: str, **kwargs: Any) -> Any:
        """Perform a request and return the response metadata."""
        return self._request(method, path, **kwargs).json().get("metadata")

    def _submit(self, kind: str, method: str, path: str, **kwargs: Any) -> Operation | None:
        """Perform a mutating request; return an Operation if the server answered asynchronously."""
        body = self._request(method, path, **kwargs).json()
        if body.get("type") == "async":
            return Operation.from_payload(self, kind, body.get("metadata") or {})
        return None

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self._base}{path}"
        params = dict(kwargs.pop("params", None) or {})
        if self.project:
            params.setdefault("project", self.project)
        kwargs.setdefault("timeout", self._timeout)
        logger.debug("%s %s params=%s", method, path, params)

        try:
            resp = self._session.request(method, url, params=params or None, **kwargs)
        except requests.RequestException as exc:
            raise LXCAPIError(f"Request failed: {exc}") from exc

        if resp.status_code >= 400:
            message = self._error_message(resp)
            if resp.status_code == 404:
                raise NotFoundError(message, response_body=resp.text)
            if resp.status_code == 409:
                raise AlreadyExistsError(message, response_body=resp.text)
            raise LXCAPIError(
                f"HTTP {resp.status_code} on {method} {path}: {message}",
                status_code=resp.status_code,
                response_body=resp.text,
            )

        return resp

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            return str(resp.json().get("error") or resp.text)
        except ValueError:
            return resp.text


