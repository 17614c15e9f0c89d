"""Command channel to the executor.

One channel owns one connection and one reader task. The reader is the only
consumer of inbound frames and routes each by its ``type``:

- command-result / command-error → correlation table
- command_progress → progress router (and refreshes the request deadline)
- mcp_event → subscription registry
- anything else → logged and dropped

Usage:
    channel = CommandChannel(connection, progress=router, subscriptions=subs)
    await channel.start()
    result = await channel.request("get_document_info", {})
    await channel.close()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Any

from .correlation import DEFAULT_TIMEOUT, CorrelationTable
from .errors import ChannelError, ExecutionError, ExecutorUnavailableError
from .progress import ProgressRouter
from .protocol.messages import (
    ClosePlugin,
    CommandError,
    CommandResult,
    ExecuteCommand,
    HostEvent,
    Notify,
    ProgressEvent,
    UpdateSettings,
    WireMessage,
    parse_message,
)
from .subscriptions import SubscriptionRegistry
from .transport.base import Connection, ConnectionClosed

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    IDLE = "idle"
    OPEN = "open"
    CLOSED = "closed"


class CommandChannel:
    """Request/response over one executor connection.

    Args:
        connection: Frame transport to the executor
        timeout: Default per-request timeout in seconds
        progress: Receives progress events, optional
        subscriptions: Receives host events, optional
    """

    def __init__(
        self,
        connection: Connection,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        progress: ProgressRouter | None = None,
        subscriptions: SubscriptionRegistry | None = None,
    ) -> None:
        self.connection = connection
        self.table = CorrelationTable(default_timeout=timeout)
        self.progress = progress
        self.subscriptions = subscriptions
        self.state = ChannelState.IDLE
        self.dropped = 0
        self._reader: asyncio.Task | None = None
        self._closed_event = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self.state == ChannelState.OPEN and self.connection.is_connected

    async def start(self) -> None:
        if self.state != ChannelState.IDLE:
            return
        self.state = ChannelState.OPEN
        self._reader = asyncio.create_task(self._read_loop(), name="conduit-channel-reader")

    async def close(self, reason: str = "Channel closed") -> None:
        if self.state == ChannelState.CLOSED:
            return
        self._teardown(reason)
        await self.connection.close()
        if self._reader and self._reader is not asyncio.current_task():
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    async def request(self, command: str, params: Any, timeout: float | None = None) -> Any:
        """Send one command and wait for its reply.

        Raises:
            ExecutionError: The executor replied with command-error
            TransportTimeoutError: No reply before the deadline
            ExecutorUnavailableError: The channel is closed or closes mid-flight
        """
        if not self.is_open:
            raise ExecutorUnavailableError("No executor connected")

        entry = self.table.open(command, timeout)
        envelope = ExecuteCommand(id=entry.id, command=command, params=params)
        try:
            await self.connection.send_text(envelope.to_json())
        except ConnectionClosed as e:
            self.table.reject(entry.id, ExecutorUnavailableError(f"Executor connection lost: {e}"))
            # Consume the rejection so it is not reported as unretrieved
            with contextlib.suppress(ExecutorUnavailableError):
                await entry.future
            raise ExecutorUnavailableError(f"Executor connection lost: {e}") from e

        logger.debug(f"Sent {command} as {entry.id}")
        return await self.table.wait(entry)

    async def update_settings(self, **settings: Any) -> None:
        await self._send_admin(UpdateSettings(**settings))

    async def notify(self, message: str) -> None:
        await self._send_admin(Notify(message=message))

    async def close_plugin(self) -> None:
        await self._send_admin(ClosePlugin())

    @property
    def pending_count(self) -> int:
        return len(self.table)

    async def _send_admin(self, message: WireMessage) -> None:
        if not self.is_open:
            raise ExecutorUnavailableError("No executor connected")
        await self.connection.send_text(message.to_json())

    async def _read_loop(self) -> None:
        try:
            async for raw in self.connection.receive_text():
                try:
                    await self._route(parse_message(raw))
                except ChannelError as e:
                    self.dropped += 1
                    logger.warning(f"Dropped inbound message: {e.message}")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Executor channel reader failed")
        finally:
            self._teardown("Executor disconnected")

    async def _route(self, message: WireMessage) -> None:
        if isinstance(message, CommandResult):
            self.table.resolve(message.id, message.result)
        elif isinstance(message, CommandError):
            self.table.reject(
                message.id,
                ExecutionError(message.error_message, command=message.command),
            )
        elif isinstance(message, ProgressEvent):
            self.table.touch(message.command_id)
            if self.progress is not None:
                await self.progress.publish(message)
        elif isinstance(message, HostEvent):
            if self.subscriptions is not None:
                await self.subscriptions.publish(message.event_type, message.payload)
        else:
            raise ChannelError(f"Unexpected message type from executor: {message.type}")

    def _teardown(self, reason: str) -> None:
        if self.state == ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSED
        self.table.reject_all(ExecutorUnavailableError(reason))
        self._closed_event.set()
        logger.info(f"Executor channel closed: {reason}")
