"""Frozen dataclasses for configuration and YAML loader with env-var interpolation."""

from __future__ import annotations

import os
import re
import types
import typing
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _interpolate_env(value: str) -> str:
    """Replace ${ENV_VAR} placeholders with environment variable values."""

    def _replace(match: re.Match) -> str:
        env_key = match.group(1)
        env_val = os.environ.get(env_key)
        if env_val is None:
            raise ConfigError(f"Environment variable '{env_key}' is not set")
        return env_val

    return _ENV_PATTERN.sub(_replace, value)


def _walk_and_interpolate(obj: Any) -> Any:
    """Recursively interpolate env vars in strings throughout a nested structure."""
    if isinstance(obj, str):
        return _interpolate_env(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(v) for v in obj]
    return obj


@dataclass(frozen=True)
class LXCConfig:
    """Connection details for the LXD/Incus server."""

    server: str = "unix://"  # "unix://[socket path]" or "https://host:port"
    client_crt: str = ""  # path to the client certificate (https only)
    client_key: str = ""  # path to the client key (https only)
    server_crt: str = ""  # path to the pinned server certificate (https only)
    insecure_skip_verify: bool = False
    project: str = ""
    timeout: int = 30  # per-request HTTP timeout in seconds


@dataclass(frozen=True)
class EndpointConfig:
    host: str = ""
    port: int = 6443


@dataclass(frozen=True)
class ClusterConfig:
    name: str = ""
    namespace: str = "default"
    control_plane_endpoint: EndpointConfig = field(default_factory=EndpointConfig)


@dataclass(frozen=True)
class ImageSourceConfig:
    name: str = ""
    fingerprint: str = ""
    server: str = ""
    protocol: str = ""


@dataclass(frozen=True)
class LoadBalancerInstanceConfig:
    """Instance overrides for the "lxc" and "oci" load balancer strategies."""

    instance_name: str = ""  # empty = "<cluster>-<namespace hash>-lb"
    flavor: str = ""
    profiles: list[str] = field(default_factory=list)
    image: ImageSourceConfig = field(default_factory=ImageSourceConfig)
    target: str = ""  # cluster member "name" or cluster group "@name"
    custom_haproxy_config_template: str = ""


@dataclass(frozen=True)
class OVNLoadBalancerConfig:
    network_name: str = ""


@dataclass(frozen=True)
class KubeVIPConfig:
    image: str = ""  # empty = DEFAULT_KUBE_VIP_IMAGE
    interface: str = ""
    kubeconfig_path: str = ""
    manifest_path: str = ""


@dataclass(frozen=True)
class ExternalLoadBalancerConfig:
    """No options; the operator makes the control plane endpoint reachable."""


@dataclass(frozen=True)
class LoadBalancerConfig:
    lxc: LoadBalancerInstanceConfig | None = None
    oci: LoadBalancerInstanceConfig | None = None
    ovn: OVNLoadBalancerConfig | None = None
    kube_vip: KubeVIPConfig | None = None
    external: ExternalLoadBalancerConfig | None = None
    frontend_port: int = 6443
    backend_port: int = 6443

    def declared_strategies(self) -> list[str]:
        """Names of the strategy sections that are set, in declaration order."""
        return [name for name in ("lxc", "oci", "ovn", "kube_vip", "external") if getattr(self, name) is not None]


@dataclass(frozen=True)
class TimeoutsConfig:
    """Deadlines (seconds) per operation category."""

    instance_create: float = 300
    instance_start: float = 120
    instance_stop: float = 120
    instance_delete: float = 180
    load_balancer_reconfigure: float = 30
    operation_poll_interval: float = 1.0
    address_poll_interval: float = 1.0


@dataclass(frozen=True)
class PollingConfig:
    interval_seconds: int = 30
    jitter_seconds: int = 5
    max_backoff_seconds: int = 300
    backoff_base_seconds: int = 5


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # "json" or "text"


@dataclass(frozen=True)
class AppConfig:
    lxc: LXCConfig = field(default_factory=LXCConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    load_balancer: LoadBalancerConfig = field(default_factory=LoadBalancerConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _get_dataclass_type(ft: Any) -> type | None:
    """Return the underlying dataclass type from a type annotation (handles Optional/X|None)."""
    if isinstance(ft, type) and hasattr(ft, "__dataclass_fields__"):
        return ft
    # Handle X | None (Python 3.10+ types.UnionType has __args__ but no __origin__)
    if isinstance(ft, types.UnionType):
        args = [a for a in ft.__args__ if a is not type(None)]
        if len(args) == 1 and isinstance(args[0], type) and hasattr(args[0], "__dataclass_fields__"):
            return args[0]
    # Handle typing.Optional[X] → Union[X, None]
    origin = getattr(ft, "__origin__", None)
    if origin is typing.Union:
        args = [a for a in ft.__args__ if a is not type(None)]
        if len(args) == 1 and isinstance(args[0], type) and hasattr(args[0], "__dataclass_fields__"):
            return args[0]
    return None


def _build_nested(cls: type, data: dict[str, Any]) -> Any:
    """Construct a frozen dataclass, recursively building nested dataclass fields."""
    if not isinstance(data, dict):
        return data
    field_types = {f.name: f.type for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        key = key.replace("-", "_")
        if key not in field_types:
            continue
        ft = field_types[key]
        # Resolve string annotations to actual types in the module scope
        if isinstance(ft, str):
            ft = eval(ft, globals(), {cls.__name__: cls})  # noqa: S307
        dc_type = _get_dataclass_type(ft)
        if dc_type is not None and isinstance(value, dict):
            kwargs[key] = _build_nested(dc_type, value)
        else:
            kwargs[key] = value
    return cls(**kwargs)


def parse_config(raw: Any) -> AppConfig:
    """Build and validate an AppConfig from an already-parsed mapping."""
    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must be a YAML mapping")

    raw = _walk_and_interpolate(raw)
    try:
        config = _build_nested(AppConfig, raw)
    except TypeError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    _validate(config)
    return config


def load_config(path: str | Path) -> AppConfig:
    """Load and validate configuration from a YAML file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    return parse_config(raw)


def _validate(config: AppConfig) -> None:
    """Validate configuration values."""
    if not config.lxc.server.startswith(("unix://", "https://")):
        raise ConfigError(f"lxc.server {config.lxc.server!r} is not unix:// or https://")

    if config.lxc.server.startswith("https://"):
        if not config.lxc.client_crt or not config.lxc.client_key:
            raise ConfigError("lxc.client_crt and lxc.client_key are required for https:// servers")

    if not config.cluster.name:
        raise ConfigError("cluster.name is required")

    strategies = config.load_balancer.declared_strategies()
    if len(strategies) > 1:
        raise ConfigError(f"Only one load_balancer strategy may be set, found: {', '.join(strategies)}")

    if config.load_balancer.ovn is not None and not config.load_balancer.ovn.network_name:
        raise ConfigError("load_balancer.ovn.network_name is required")

    needs_endpoint = not strategies or strategies[0] in ("ovn", "kube_vip", "external")
    if needs_endpoint and not config.cluster.control_plane_endpoint.host:
        raise ConfigError(
            "cluster.control_plane_endpoint.host is required for the "
            f"'{strategies[0] if strategies else 'external'}' load balancer"
        )

    for f in fields(config.timeouts):
        if getattr(config.timeouts, f.name) <= 0:
            raise ConfigError(f"timeouts.{f.name} must be > 0")

    if config.polling.interval_seconds < 5:
        raise ConfigError("polling.interval_seconds must be >= 5")

    if config.logging.format not in ("json", "text"):
        raise ConfigError("logging.format must be 'json' or 'text'")
