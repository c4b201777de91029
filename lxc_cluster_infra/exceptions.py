"""Custom exception hierarchy for the LXC cluster infrastructure engine."""

from __future__ import annotations


class LXCInfraError(Exception):
    """Base exception for all engine errors."""


class TerminalError(LXCInfraError):
    """Non-retriable failure. Retrying without a configuration change cannot succeed."""


class ConfigError(TerminalError):
    """Invalid or missing configuration."""


class LoadBalancerConflict(TerminalError):
    """A load balancer object exists at the desired address but belongs to someone else."""


class LXCAPIError(LXCInfraError):
    """Error communicating with the LXD/Incus REST API."""

    def __init__(self, message: str, status_code: int | None = None, response_body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class NotFoundError(LXCAPIError):
    """HTTP 404: the requested object does not exist."""

    def __init__(self, message: str = "Not found", response_body: str | None = None):
        super().__init__(message, status_code=404, response_body=response_body)


class AlreadyExistsError(LXCAPIError):
    """HTTP 409: the object already exists (usually a concurrent create)."""

    def __init__(self, message: str = "Already exists", response_body: str | None = None):
        super().__init__(message, status_code=409, response_body=response_body)


class OperationFailed(LXCInfraError):
    """A long-running remote operation reached the Failure or Cancelled state."""

    def __init__(self, kind: str, err: str, operation_id: str | None = None):
        super().__init__(f"{kind} operation failed: {err}")
        self.kind = kind
        self.err = err
        self.operation_id = operation_id


class CommandFailed(LXCInfraError):
    """An in-instance command exited with a non-zero return code."""

    def __init__(self, command: list[str], return_code: int, stdout: str = "", stderr: str = ""):
        super().__init__(f"command {command} exited with code {return_code}: {stderr.strip()}")
        self.command = command
        self.return_code = return_code
        self.stdout = stdout
        self.stderr = stderr


class DeadlineExceeded(LXCInfraError):
    """The deadline of the current call elapsed before the wait completed."""


class OperationCancelled(LXCInfraError):
    """The caller cancelled the current call."""


def is_terminal_error(exc: BaseException | None) -> bool:
    """Return True if exc, or any exception it was explicitly raised from, is a TerminalError."""
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, TerminalError):
            return True
        seen.add(id(exc))
        exc = exc.__cause__
    return False


def wrap_error(message: str, exc: BaseException) -> LXCInfraError:
    """Build an error prefixed with ``message`` that keeps the terminal marker of ``exc``.

    Use as ``raise wrap_error("failed to X", exc) from exc``.
    """
    cls = TerminalError if is_terminal_error(exc) else LXCInfraError
    return cls(f"{message}: {exc}")
