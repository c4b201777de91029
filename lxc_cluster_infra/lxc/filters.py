"""Instance list filters and address extraction from instance state."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ListFilter:
    """Matches instances whose config contains every given key (and value, when set).

    Combine several filters by passing them together; an instance must match all.
    """

    config: dict[str, str] = field(default_factory=dict)
    config_keys: tuple[str, ...] = ()

    @classmethod
    def with_config(cls, config: dict[str, str]) -> ListFilter:
        return cls(config=dict(config))

    @classmethod
    def with_config_keys(cls, *keys: str) -> ListFilter:
        return cls(config_keys=keys)

    def matches(self, instance: dict[str, Any]) -> bool:
        config = instance.get("config") or {}
        if any(config.get(k) != v for k, v in self.config.items()):
            return False
        return all(k in config for k in self.config_keys)


def match_all(instance: dict[str, Any], filters: tuple[ListFilter, ...] | list[ListFilter]) -> bool:
    return all(f.matches(instance) for f in filters)


def parse_host_addresses(state: dict[str, Any] | None) -> list[str]:
    """Global addresses of an instance, in the order the server reports them.

    Skips the loopback interface and any loopback or link-local address.
    """
    if not state:
        return []

    addresses = []
    for iface_name, iface in (state.get("network") or {}).items():
        if iface_name == "lo":
            continue
        for addr in iface.get("addresses") or []:
            value = addr.get("address", "")
            try:
                ip = ipaddress.ip_address(value)
            except ValueError:
                continue
            if ip.is_loopback or ip.is_link_local:
                continue
            addresses.append(value)
    return addresses
