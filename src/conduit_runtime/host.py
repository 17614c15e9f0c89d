"""Executor side of the channel protocol.

ExecutorHost is what runs next to the design document: it receives
``execute-command`` frames, runs the named handler as its own task (so
replies can come back in any order), and answers with ``command-result`` or
``command-error``. Handlers get a HostContext for reporting progress and
emitting host events.

The runtime never imports this for dispatch; it exists for the sandbox
executor and for tests that need a real peer on the other end of a channel.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .chunking import CHUNK_DELAY, ITEM_DELAY, SCAN_CHUNK_SIZE, ChunkedRunner
from .errors import ChannelError
from .progress import ProgressEmitter
from .protocol.messages import (
    ClosePlugin,
    CommandError,
    CommandResult,
    ExecuteCommand,
    HostEvent,
    Notify,
    ProgressEvent,
    UpdateSettings,
    parse_message,
)
from .transport.base import Connection, ConnectionClosed

logger = logging.getLogger(__name__)

EventEmitter = Callable[[str, Any], Awaitable[None]]


@dataclass
class HostContext:
    """Per-request context handed to host handlers."""

    request_id: str
    command: str
    emit_progress: ProgressEmitter
    emit_event: EventEmitter
    settings: dict[str, Any] = field(default_factory=dict)

    def chunked(
        self,
        chunk_size: int | None = None,
        *,
        item_delay: float | None = None,
        chunk_delay: float | None = None,
    ) -> ChunkedRunner:
        """A ChunkedRunner reporting progress for this request."""
        if item_delay is None:
            item_delay = self.settings.get("itemDelay", ITEM_DELAY)
        if chunk_delay is None:
            chunk_delay = self.settings.get("chunkDelay", CHUNK_DELAY)
        return ChunkedRunner(
            self.emit_progress,
            chunk_size=chunk_size or self.settings.get("chunkSize", SCAN_CHUNK_SIZE),
            item_delay=item_delay,
            chunk_delay=chunk_delay,
        )


HostHandler = Callable[[dict[str, Any], HostContext], Awaitable[Any]]


class ExecutorHost:
    """Serves commands arriving on one connection.

    Args:
        connection: Executor end of the channel
        handlers: Command name → host handler
        settings: Initial settings; ``update-settings`` merges into them
    """

    def __init__(
        self,
        connection: Connection,
        handlers: dict[str, HostHandler],
        *,
        settings: dict[str, Any] | None = None,
    ) -> None:
        self.connection = connection
        self.handlers = dict(handlers)
        self.settings: dict[str, Any] = dict(settings or {})
        self.notifications: list[str] = []
        self.closed = False
        self._tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        """Serve until the connection closes or ``close-plugin`` arrives."""
        try:
            async for raw in self.connection.receive_text():
                try:
                    message = parse_message(raw)
                except ChannelError as e:
                    logger.warning(f"Executor dropped message: {e.message}")
                    continue

                if isinstance(message, ExecuteCommand):
                    task = asyncio.create_task(self._execute(message))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                elif isinstance(message, UpdateSettings):
                    self.settings.update(message.settings)
                    logger.info(f"Settings updated: {sorted(message.settings)}")
                elif isinstance(message, Notify):
                    self.notifications.append(message.message)
                    logger.info(f"Notification: {message.message}")
                elif isinstance(message, ClosePlugin):
                    logger.info("Close requested")
                    break
                else:
                    logger.warning(f"Executor ignoring message of type {message.type}")
        finally:
            self.closed = True
            for task in list(self._tasks):
                task.cancel()
            for task in list(self._tasks):
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            await self.connection.close()

    async def emit_event(self, event_type: str, payload: Any) -> None:
        """Send a host-originated event to the runtime."""
        await self._send(HostEvent(event_type=event_type, payload=payload).to_json())

    async def _emit_progress(self, event: ProgressEvent) -> None:
        await self._send(event.to_json())

    async def _execute(self, message: ExecuteCommand) -> None:
        handler = self.handlers.get(message.command)
        if handler is None:
            await self._reply_error(message, f"Unknown command: {message.command}")
            return

        ctx = HostContext(
            request_id=message.id,
            command=message.command,
            emit_progress=self._emit_progress,
            emit_event=self.emit_event,
            settings=self.settings,
        )
        try:
            result = await handler(message.params or {}, ctx)
        except Exception as e:
            logger.info(f"Command {message.command} ({message.id}) failed: {e}")
            await self._reply_error(message, str(e) or type(e).__name__)
            return

        await self._send(
            CommandResult(id=message.id, command=message.command, result=result).to_json()
        )

    async def _reply_error(self, message: ExecuteCommand, error: str) -> None:
        reply = CommandError(id=message.id, command=message.command, error=error)
        await self._send(reply.to_json())

    async def _send(self, frame: str) -> None:
        try:
            await self.connection.send_text(frame)
        except ConnectionClosed:
            logger.warning("Executor could not send: connection closed")
