"""Per-call context: cancellation token, deadline and structured logger."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

from .exceptions import DeadlineExceeded, OperationCancelled


class ContextLogger(logging.LoggerAdapter):
    """LoggerAdapter that merges its bound values with any per-record ``extra``."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


class Context:
    """Cancellation token and deadline threaded through every blocking call.

    Child contexts created with ``with_timeout`` or ``with_values`` share the
    parent's cancellation event, so cancelling the root aborts every wait below
    it. A child deadline never extends past its parent's.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        *,
        deadline: float | None = None,
        cancel_event: threading.Event | None = None,
        values: dict[str, Any] | None = None,
    ):
        self._logger = logger or logging.getLogger("lxc_cluster_infra")
        self._values = dict(values or {})
        self.deadline = deadline
        self._cancel_event = cancel_event or threading.Event()
        self.log = ContextLogger(self._logger, self._values)

    @classmethod
    def background(cls, logger: logging.Logger | None = None) -> Context:
        """Return a root context with no deadline."""
        return cls(logger)

    def with_timeout(self, seconds: float) -> Context:
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return Context(self._logger, deadline=deadline, cancel_event=self._cancel_event, values=self._values)

    def with_values(self, **values: Any) -> Context:
        return Context(
            self._logger,
            deadline=self.deadline,
            cancel_event=self._cancel_event,
            values={**self._values, **values},
        )

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None if there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        """Raise if the context is cancelled or its deadline has passed."""
        if self._cancel_event.is_set():
            raise OperationCancelled("context cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise DeadlineExceeded("context deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Wait for ``seconds``, waking early to raise on cancellation or deadline."""
        self.check()
        remaining = self.remaining()
        timeout = seconds if remaining is None else min(seconds, remaining)
        if self._cancel_event.wait(timeout):
            raise OperationCancelled("context cancelled")
        self.check()
