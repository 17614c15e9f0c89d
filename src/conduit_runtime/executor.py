"""Executor interface.

Dispatch, batching and chunking only ever call ``Executor.execute``. The
real executor sits behind a channel; tests and the embedded sandbox can run
host handlers in-process instead.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from .channel import CommandChannel
from .correlation import new_request_id
from .errors import ExecutionError, ExecutorUnavailableError
from .host import HostContext, HostHandler
from .progress import ProgressRouter
from .protocol.messages import ProgressEvent
from .subscriptions import SubscriptionRegistry

logger = logging.getLogger(__name__)


@runtime_checkable
class Executor(Protocol):
    """Runs one named command with already-validated params."""

    async def execute(self, command: str, params: Any, *, timeout: float | None = None) -> Any:
        """Returns the command's result.

        Raises:
            ExecutionError: The command failed on the executor
            TransportTimeoutError: No reply before the deadline
            ExecutorUnavailableError: No executor to send to
        """
        ...


class RemoteExecutor:
    """Executor reached over a CommandChannel.

    The channel is attached when an executor connects and detached when it
    goes away, so one RemoteExecutor lives for the whole process.
    """

    def __init__(self, channel: CommandChannel | None = None) -> None:
        self._channel = channel

    @property
    def channel(self) -> CommandChannel | None:
        return self._channel

    @property
    def is_connected(self) -> bool:
        return self._channel is not None and self._channel.is_open

    def attach(self, channel: CommandChannel) -> None:
        if self._channel is not None and self._channel is not channel:
            logger.warning("Replacing attached executor channel")
        self._channel = channel

    def detach(self, channel: CommandChannel | None = None) -> None:
        if channel is None or channel is self._channel:
            self._channel = None

    async def execute(self, command: str, params: Any, *, timeout: float | None = None) -> Any:
        channel = self._channel
        if channel is None:
            raise ExecutorUnavailableError("No executor connected")
        return await channel.request(command, params, timeout)


class LocalExecutor:
    """Runs host handlers in-process, without a channel.

    Progress goes straight to ``progress`` and host events to
    ``subscriptions``. ``timeout`` is accepted for interface parity; local
    handlers always run to completion.
    """

    def __init__(
        self,
        handlers: dict[str, HostHandler],
        *,
        progress: ProgressRouter | None = None,
        subscriptions: SubscriptionRegistry | None = None,
        settings: dict[str, Any] | None = None,
    ) -> None:
        self.handlers = dict(handlers)
        self.progress = progress
        self.subscriptions = subscriptions
        self.settings: dict[str, Any] = dict(settings or {})
        self.calls: list[tuple[str, Any]] = []

    async def execute(self, command: str, params: Any, *, timeout: float | None = None) -> Any:
        self.calls.append((command, params))
        handler = self.handlers.get(command)
        if handler is None:
            raise ExecutionError(f"Unknown command: {command}", command=command)

        ctx = HostContext(
            request_id=new_request_id(),
            command=command,
            emit_progress=self._emit_progress,
            emit_event=self._emit_event,
            settings=self.settings,
        )
        try:
            return await handler(params or {}, ctx)
        except Exception as e:
            raise ExecutionError(str(e) or type(e).__name__, command=command) from e

    async def _emit_progress(self, event: ProgressEvent) -> None:
        if self.progress is not None:
            await self.progress.publish(event)

    async def _emit_event(self, event_type: str, payload: Any) -> None:
        if self.subscriptions is not None:
            await self.subscriptions.publish(event_type, payload)
