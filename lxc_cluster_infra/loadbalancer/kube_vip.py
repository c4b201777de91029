"""Control plane endpoint served by kube-vip running on the control plane instances."""

from __future__ import annotations

import ipaddress

from ..config import EndpointConfig, KubeVIPConfig
from ..context import Context
from ..exceptions import TerminalError
from .haproxy_config import KUBE_VIP_TEMPLATE, render_template
from .manager import Manager

DEFAULT_KUBE_VIP_IMAGE = "ghcr.io/kube-vip/kube-vip:v0.6.4"
DEFAULT_MANIFEST_PATH = "/etc/kubernetes/manifests/kube-vip.yaml"

# kube-vip needs super-admin.conf on the first control plane node until
# kubeadm has created the RBAC for admin.conf
BOOTSTRAP_KUBECONFIG_PATH = "/etc/kubernetes/super-admin.conf"
KUBECONFIG_PATH = "/etc/kubernetes/admin.conf"


class KubeVIPManager(Manager):
    """No remote object; a static pod manifest is injected into every control plane instance."""

    def __init__(self, config: KubeVIPConfig, endpoint: EndpointConfig):
        self._config = config
        self.address = endpoint.host
        self.port = endpoint.port

    def create(self, ctx: Context) -> list[str]:
        if not self.address:
            raise TerminalError("using kube-vip requires cluster.control_plane_endpoint.host to be set")
        return [self.address]

    def delete(self, ctx: Context) -> None:
        pass

    def reconfigure(self, ctx: Context) -> None:
        pass

    def control_plane_instance_templates(self, control_plane_initialized: bool) -> dict[str, str]:
        if not self.address:
            raise TerminalError("using kube-vip requires cluster.control_plane_endpoint.host to be set")

        kubeconfig_path = self._config.kubeconfig_path
        if not kubeconfig_path:
            kubeconfig_path = KUBECONFIG_PATH if control_plane_initialized else BOOTSTRAP_KUBECONFIG_PATH

        manifest = render_template(
            KUBE_VIP_TEMPLATE,
            {
                "image": self._config.image or DEFAULT_KUBE_VIP_IMAGE,
                "interface": self._config.interface,
                "address": self.address,
                "port": self.port,
                "cidr": _host_cidr(self.address),
                "kubeconfig_path": kubeconfig_path,
            },
        )
        return {self._config.manifest_path or DEFAULT_MANIFEST_PATH: manifest}

    def inspect(self, ctx: Context) -> dict[str, str]:
        return {"address.txt": f"{self.address}:{self.port}\n"}


def _host_cidr(address: str) -> str:
    try:
        return "128" if ipaddress.ip_address(address).version == 6 else "32"
    except ValueError:
        return "32"
