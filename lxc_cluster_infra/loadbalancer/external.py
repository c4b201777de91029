"""Control plane endpoint managed outside of this tool."""

from __future__ import annotations

from ..context import Context
from .manager import Manager


class ExternalManager(Manager):
    """Does nothing. The operator makes the control plane endpoint reachable."""

    def __init__(self, address: str):
        self.address = address

    def create(self, ctx: Context) -> list[str]:
        return [self.address] if self.address else []

    def delete(self, ctx: Context) -> None:
        pass

    def reconfigure(self, ctx: Context) -> None:
        pass

    def control_plane_instance_templates(self, control_plane_initialized: bool) -> dict[str, str]:
        return {}

    def inspect(self, ctx: Context) -> dict[str, str]:
        return {}
