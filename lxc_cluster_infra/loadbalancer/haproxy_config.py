"""Jinja2 rendering of haproxy configuration and instance templates."""

from __future__ import annotations

from typing import Any

import jinja2

from ..exceptions import ConfigError
from .backends import BackendView

DEFAULT_HAPROXY_TEMPLATE = "haproxy.cfg.j2"
KUBE_VIP_TEMPLATE = "kube-vip.yaml.j2"

_environment: jinja2.Environment | None = None


def hostport(address: str, port: int | str) -> str:
    """Join host and port, bracketing IPv6 literals."""
    if ":" in address and not address.startswith("["):
        return f"[{address}]:{port}"
    return f"{address}:{port}"


def template_environment() -> jinja2.Environment:
    global _environment
    if _environment is None:
        _environment = jinja2.Environment(
            loader=jinja2.PackageLoader("lxc_cluster_infra.loadbalancer", "templates"),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        _environment.filters["hostport"] = hostport
    return _environment


def render_template(name: str | None, context: dict[str, Any], source: str | None = None) -> str:
    """Render the packaged template ``name``, or ``source`` when given."""
    env = template_environment()
    try:
        template = env.from_string(source) if source else env.get_template(name)
        return template.render(**context)
    except jinja2.TemplateError as exc:
        raise ConfigError(f"failed to render template {name or '<custom>'}: {exc}") from exc


def render_haproxy_config(view: BackendView, template: str | None = None) -> bytes:
    """Render haproxy.cfg for ``view``.

    ``template`` replaces the built-in template. It sees ``frontend_port``,
    ``backend_port`` and ``servers`` (each with ``name``, ``address`` and
    ``weight``, sorted by name) plus the ``hostport`` filter.
    """
    context = {
        "frontend_port": view.frontend_port,
        "backend_port": view.backend_port,
        "servers": sorted(view.servers, key=lambda s: s.name),
    }
    return render_template(DEFAULT_HAPROXY_TEMPLATE, context, source=template).encode()
