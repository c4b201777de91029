"""Load balancers backed by an haproxy instance."""

from __future__ import annotations

from ..config import LoadBalancerInstanceConfig, TimeoutsConfig
from ..context import Context
from ..exceptions import CommandFailed, LXCInfraError, OperationCancelled, wrap_error
from ..lxc.client import LXCClient
from ..lxc.images import SIMPLESTREAMS, Image, parse_oci_image
from ..lxc.launch_spec import CONTAINER, LaunchSpec
from ..lxc.lifecycle import InstanceLifecycle
from .backends import DEFAULT_CONTROL_PLANE_PORT, ROLE_LOAD_BALANCER, ClusterIdentity, get_backend_view
from .haproxy_config import render_haproxy_config
from .manager import Manager, add_info


INSTALL_HAPROXY_SCRIPT_PATH = "/opt/cluster-api/install-haproxy.sh"
INSTALL_HAPROXY_SCRIPT = """\
#!/bin/sh -xe
if command -v haproxy >/dev/null 2>&1; then
  exit 0
fi
if command -v apt-get >/dev/null 2>&1; then
  apt-get update
  DEBIAN_FRONTEND=noninteractive apt-get install -y haproxy
elif command -v dnf >/dev/null 2>&1; then
  dnf install -y haproxy
elif command -v apk >/dev/null 2>&1; then
  apk add haproxy
else
  echo "no supported package manager found" >&2
  exit 1
fi
systemctl enable --now haproxy.service
"""


class HaproxyInstanceManager(Manager):
    """Runs haproxy in a dedicated instance and rewrites its config on reconfigure."""

    default_image: Image = Image()
    config_path = ""
    reload_command: list[str] = []
    inspect_commands: dict[str, list[str]] = {}

    def __init__(
        self,
        client: LXCClient,
        cluster: ClusterIdentity,
        spec: LoadBalancerInstanceConfig,
        timeouts: TimeoutsConfig | None = None,
        *,
        frontend_port: int = DEFAULT_CONTROL_PLANE_PORT,
        backend_port: int = DEFAULT_CONTROL_PLANE_PORT,
    ):
        self._client = client
        self._cluster = cluster
        self._spec = spec
        self._timeouts = timeouts or TimeoutsConfig()
        self._frontend_port = frontend_port
        self._backend_port = backend_port
        self.name = spec.instance_name or cluster.load_balancer_instance_name()
        self._lifecycle = InstanceLifecycle(client.with_target(spec.target), self._timeouts)

    def base_launch_spec(self) -> LaunchSpec:
        return LaunchSpec().with_instance_type(CONTAINER)

    def launch_spec(self) -> LaunchSpec:
        image = self._spec.image
        return (
            self.base_launch_spec()
            .with_image(self.default_image)
            .with_image(Image(protocol=image.protocol, server=image.server, alias=image.name, fingerprint=image.fingerprint))
            .with_profiles(self._spec.profiles)
            .with_flavor(self._spec.flavor)
            .with_config(self._cluster.labels(ROLE_LOAD_BALANCER))
        )

    def check_capabilities(self) -> None:
        """Raise TerminalError if the server cannot run this kind of instance."""

    def after_launch(self, ctx: Context) -> None:
        """Hook run once the instance has started."""

    def create(self, ctx: Context) -> list[str]:
        ctx = ctx.with_values(load_balancer=self.name)
        try:
            self.check_capabilities()
            ctx.log.info("Launching load balancer instance")
            addresses = self._lifecycle.launch(ctx, self.name, self.launch_spec())
            self.after_launch(ctx)
        except OperationCancelled:
            raise
        except LXCInfraError as exc:
            raise wrap_error("failed to create load balancer instance", exc) from exc
        return addresses

    def delete(self, ctx: Context) -> None:
        ctx = ctx.with_values(load_balancer=self.name)
        ctx.log.info("Deleting load balancer instance")
        try:
            self._lifecycle.delete(ctx, self.name)
        except OperationCancelled:
            raise
        except LXCInfraError as exc:
            raise wrap_error("failed to delete load balancer instance", exc) from exc

    def reconfigure(self, ctx: Context) -> None:
        ctx = ctx.with_timeout(self._timeouts.load_balancer_reconfigure).with_values(load_balancer=self.name)
        try:
            view = get_backend_view(
                ctx,
                self._lifecycle,
                self._cluster,
                frontend_port=self._frontend_port,
                backend_port=self._backend_port,
            )
            config = render_haproxy_config(view, self._spec.custom_haproxy_config_template or None)

            ctx.log.info("Write haproxy config", extra={"path": self.config_path, "servers": view.summary()})
            self._lifecycle.write_file(self.name, self.config_path, config, mode=0o440)

            ctx.log.info("Reloading haproxy")
            self._lifecycle.run_command(ctx, self.name, self.reload_command)
        except OperationCancelled:
            raise
        except LXCInfraError as exc:
            raise wrap_error("failed to reconfigure load balancer", exc) from exc

    def control_plane_instance_templates(self, control_plane_initialized: bool) -> dict[str, str]:
        return {}

    def inspect(self, ctx: Context) -> dict[str, str]:
        result: dict[str, str] = {}
        add_info(result, "Instance", lambda: self._client.get_instance_full(self.name))

        for name, command in self.inspect_commands.items():
            try:
                output = self._lifecycle.run_command(ctx, self.name, command)
                result[name] = f"{output.stdout}\n{output.stderr}\n"
            except CommandFailed as exc:
                result[name] = f"{exc.stdout}\n{exc.stderr}\n"
                result[f"{name}.error"] = f"failed to run {command} on {self.name}: {exc}"
            except LXCInfraError as exc:
                result[f"{name}.error"] = f"failed to run {command} on {self.name}: {exc}"
        return result


class LXCManager(HaproxyInstanceManager):
    """haproxy installed from the distribution packages of a stock image."""

    default_image = Image(protocol=SIMPLESTREAMS, server="https://images.linuxcontainers.org", alias="ubuntu/24.04")
    config_path = "/etc/haproxy/haproxy.cfg"
    reload_command = ["systemctl", "reload", "haproxy.service"]
    inspect_commands = {
        "ip-a.txt": ["ip", "a"],
        "ip-r.txt": ["ip", "r"],
        "ss-plnt.txt": ["ss", "-plnt"],
        "haproxy.service": ["systemctl", "status", "--no-pager", "-l", "haproxy.service"],
        "haproxy.log": ["journalctl", "--no-pager", "-u", "haproxy.service"],
        "haproxy.cfg": ["cat", "/etc/haproxy/haproxy.cfg"],
    }

    def base_launch_spec(self) -> LaunchSpec:
        return super().base_launch_spec().with_create_files({INSTALL_HAPROXY_SCRIPT_PATH: INSTALL_HAPROXY_SCRIPT})

    def after_launch(self, ctx: Context) -> None:
        ctx.log.info("Installing haproxy")
        self._lifecycle.run_command(
            ctx.with_timeout(self._timeouts.instance_create), self.name, ["sh", INSTALL_HAPROXY_SCRIPT_PATH]
        )


class OCIManager(HaproxyInstanceManager):
    """haproxy from a pre-built application container image. Requires OCI instance support."""

    default_image = parse_oci_image("ghcr.io/lxc/cluster-api-provider-incus/haproxy:v20230606-42a2262b").to_image()
    config_path = "/usr/local/etc/haproxy/haproxy.cfg"
    # haproxy runs as PID 1 and reloads its configuration on SIGUSR2
    reload_command = ["kill", "--signal", "SIGUSR2", "1"]
    inspect_commands = {
        "haproxy.cfg": ["cat", "/usr/local/etc/haproxy/haproxy.cfg"],
    }

    def check_capabilities(self) -> None:
        try:
            self._client.supports_instance_oci()
        except LXCInfraError as exc:
            raise wrap_error("server does not support OCI containers", exc) from exc
