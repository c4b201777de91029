"""Long-running remote operations as blocking futures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..exceptions import OperationFailed

if TYPE_CHECKING:
    from ..context import Context
    from .client import LXCClient

SUCCESS = "Success"
FAILURE = "Failure"
CANCELLED = "Cancelled"
TERMINAL_STATUSES = frozenset({SUCCESS, FAILURE, CANCELLED})


@dataclass
class Operation:
    """Handle to an asynchronous mutating call on the server.

    ``kind`` names what the caller asked for (e.g. "CreateInstance") and is
    used in errors; ``description`` is the server's own label (e.g.
    "Creating instance").
    """

    client: LXCClient
    id: str
    kind: str
    description: str = ""
    status: str = ""
    err: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    resources: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, client: LXCClient, kind: str, payload: dict[str, Any]) -> Operation:
        op = cls(client=client, id=payload["id"], kind=kind)
        op._update(payload)
        return op

    def _update(self, payload: dict[str, Any]) -> None:
        self.description = payload.get("description", "")
        self.status = payload.get("status", "")
        self.err = payload.get("err", "")
        self.metadata = payload.get("metadata") or {}
        self.resources = payload.get("resources") or {}

    @property
    def done(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def refresh(self) -> Operation:
        self._update(self.client.get_operation(self.id))
        return self

    def wait(self, ctx: Context, poll_interval: float) -> dict[str, Any]:
        """Block until the operation finishes and return its final metadata.

        Raises OperationFailed if the operation fails or is cancelled remotely,
        DeadlineExceeded or OperationCancelled if ``ctx`` expires first.
        """
        while not self.done:
            ctx.sleep(poll_interval)
            self.refresh()
            ctx.log.debug("Operation %s is %s", self.id, self.status, extra={"operation": self.kind})

        if self.status != SUCCESS:
            raise OperationFailed(self.kind, self.err or self.status, operation_id=self.id)
        return self.metadata
