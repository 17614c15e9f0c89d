"""Error taxonomy for command dispatch.

Every error a caller can see derives from ConduitError and carries a stable
``code`` so HTTP routes and tool responses can report it uniformly.

- ValidationError: malformed or out-of-range params, raised before dispatch
- UnknownCommandError: no command registered under the requested name
- ExecutionError: the executor failed while handling one unit
- TransportTimeoutError: no reply before the deadline, remote state unknown
- ExecutorUnavailableError: no executor attached, or it went away mid-flight
- ChannelError: malformed or unroutable inbound message (logged, never raised
  to callers)
- BatchError: the aggregate of a batch failed under its policy
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .batch import BatchResult


class ConduitError(Exception):
    """Base class for all runtime errors."""

    code = "conduit_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(ConduitError):
    """Params failed validation; the executor was never contacted."""

    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(f"{field}: {message}" if field else message)
        self.field = field
        self.reason = message

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class UnknownCommandError(ConduitError):
    """No command is registered under the requested name."""

    code = "unknown_command"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown command: {name}")
        self.name = name


class DuplicateCommandError(ConduitError, ValueError):
    """A command with the same name is already registered."""

    code = "duplicate_command"

    def __init__(self, name: str) -> None:
        super().__init__(f"Command '{name}' is already registered")
        self.name = name


class ExecutionError(ConduitError):
    """The executor reported a failure for a command."""

    code = "execution_error"

    def __init__(self, message: str, *, command: str | None = None) -> None:
        super().__init__(message, details={"command": command} if command else None)
        self.command = command


class TransportTimeoutError(ConduitError):
    """No reply arrived before the deadline.

    The timeout only stops the caller from waiting. The executor may still
    complete the work, so the remote side effect is unknown.
    """

    code = "transport_timeout"

    def __init__(self, request_id: str, command: str, timeout: float) -> None:
        super().__init__(
            f"Command '{command}' timed out after {timeout:g}s "
            "(the executor may still complete it)",
            details={"request_id": request_id, "command": command, "timeout": timeout},
        )
        self.request_id = request_id
        self.command = command
        self.timeout = timeout


class ExecutorUnavailableError(ConduitError):
    """No executor connection is available."""

    code = "executor_unavailable"


class ChannelError(ConduitError):
    """An inbound message could not be parsed or routed."""

    code = "channel_error"


class BatchError(ConduitError):
    """A batch failed under its aggregation policy or fail-fast option."""

    code = "batch_failed"

    def __init__(self, message: str, result: BatchResult) -> None:
        super().__init__(message)
        self.result = result

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["results"] = [
            unit.model_dump(mode="json", exclude_none=True) for unit in self.result.results
        ]
        return data
