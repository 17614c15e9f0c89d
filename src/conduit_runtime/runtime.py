"""Runtime composition.

ConduitRuntime wires one registry, subscription registry, progress router,
executor and dispatcher together and manages the executor connection. The
HTTP app holds one; embedding code and tests can build their own.

Usage:
    runtime = ConduitRuntime(RuntimeConfig())
    await runtime.start_sandbox()
    result = await runtime.dispatch("rename_layer", {"rename": {...}})
    await runtime.shutdown()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from .batch import BatchDispatcher
from .channel import CommandChannel
from .commands import build_registry
from .config import RuntimeConfig
from .dispatcher import CommandDispatcher
from .executor import RemoteExecutor
from .host import ExecutorHost
from .progress import ProgressRouter
from .registry import CommandRegistry
from .sandbox import SandboxDocument, build_sandbox_handlers
from .subscriptions import EventSink, SubscriptionRegistry
from .transport import (
    Connection,
    ConnectionClosed,
    MemoryConnection,
    WebSocketClientConnection,
)

logger = logging.getLogger(__name__)


class ConduitRuntime:
    """One caller-side runtime: registry, dispatcher and executor link."""

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        *,
        registry: CommandRegistry | None = None,
    ) -> None:
        self.config = config or RuntimeConfig()
        self.registry = registry or build_registry(self.config)
        self.subscriptions = SubscriptionRegistry()
        self.progress = ProgressRouter(self.subscriptions)
        self.executor = RemoteExecutor()
        self.dispatcher = CommandDispatcher(
            self.registry,
            self.executor,
            subscriptions=self.subscriptions,
            progress=self.progress,
            batch=BatchDispatcher(
                item_delay=self.config.item_delay,
                chunk_delay=self.config.chunk_delay,
            ),
        )
        self.sandbox_host: ExecutorHost | None = None
        self._sandbox_task: asyncio.Task | None = None
        self._link_task: asyncio.Task | None = None

    @property
    def channel(self) -> CommandChannel | None:
        return self.executor.channel

    async def dispatch(
        self, name: str, params: Any = None, *, sink: EventSink | None = None
    ) -> Any:
        return await self.dispatcher.dispatch(name, params, sink=sink)

    async def attach(self, connection: Connection) -> CommandChannel:
        """Start a channel over ``connection`` and route commands to it."""
        channel = CommandChannel(
            connection,
            timeout=self.config.command_timeout,
            progress=self.progress,
            subscriptions=self.subscriptions,
        )
        await channel.start()
        self.executor.attach(channel)
        logger.info("Executor attached")
        return channel

    async def detach(self, channel: CommandChannel) -> None:
        self.executor.detach(channel)
        await channel.close("Executor detached")
        logger.info("Executor detached")

    async def connect(self, url: str, *, relay_channel: str | None = None) -> CommandChannel:
        """Dial out to an executor (or relay) WebSocket and attach it.

        With ``config.reconnect`` set, a dropped link is redialled with
        exponential backoff until it comes back, another executor takes its
        place, or ``max_reconnect_attempts`` redials have failed.

        Raises:
            ConnectionClosed: The first dial fails
        """
        await self._cancel_link()
        channel = await self._dial(url, relay_channel)
        if self.config.reconnect:
            self._link_task = asyncio.create_task(
                self._keep_linked(url, relay_channel, channel), name="conduit-link"
            )
        return channel

    async def _dial(self, url: str, relay_channel: str | None) -> CommandChannel:
        connection = WebSocketClientConnection(
            url, channel=relay_channel, open_timeout=self.config.connect_timeout
        )
        await connection.connect()
        return await self.attach(connection)

    async def _keep_linked(
        self, url: str, relay_channel: str | None, channel: CommandChannel
    ) -> None:
        config = self.config
        while True:
            await channel.wait_closed()
            # Detached on purpose, or replaced by another executor
            if self.executor.channel is not channel:
                return
            self.executor.detach(channel)

            delay = config.reconnect_delay
            for attempt in range(1, config.max_reconnect_attempts + 1):
                logger.warning(
                    f"Executor link to {url} lost. Reconnecting in {delay:g}s "
                    f"(attempt {attempt}/{config.max_reconnect_attempts})..."
                )
                await asyncio.sleep(delay)
                if self.executor.channel is not None:
                    logger.info("Another executor attached; no longer redialling")
                    return
                try:
                    channel = await self._dial(url, relay_channel)
                except ConnectionClosed as e:
                    logger.warning(f"Reconnect to {url} failed: {e}")
                    delay = min(delay * config.reconnect_backoff, config.max_reconnect_delay)
                    continue
                logger.info(f"Reconnected to {url}")
                break
            else:
                logger.error(
                    f"Giving up on {url} after {config.max_reconnect_attempts} reconnect attempts"
                )
                return

    async def _cancel_link(self) -> None:
        task, self._link_task = self._link_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def start_sandbox(self, document: SandboxDocument | None = None) -> ExecutorHost:
        """Run the sandbox executor in-process over a loopback connection."""
        runtime_end, executor_end = MemoryConnection.pair()
        host = ExecutorHost(
            executor_end,
            build_sandbox_handlers(document or SandboxDocument()),
            settings={
                "chunkSize": self.config.scan_chunk_size,
                "itemDelay": self.config.item_delay,
                "chunkDelay": self.config.chunk_delay,
            },
        )
        self.sandbox_host = host
        self._sandbox_task = asyncio.create_task(host.run(), name="conduit-sandbox")
        await self.attach(runtime_end)
        logger.info("Sandbox executor started")
        return host

    async def shutdown(self) -> None:
        await self._cancel_link()
        channel = self.executor.channel
        if channel is not None:
            await self.detach(channel)
        if self._sandbox_task is not None:
            self._sandbox_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sandbox_task
            self._sandbox_task = None
        self.progress.clear()

    def health(self) -> dict[str, Any]:
        channel = self.executor.channel
        return {
            "status": "ok",
            "executor_connected": self.executor.is_connected,
            "pending_requests": channel.pending_count if channel else 0,
            "subscriptions": len(self.subscriptions),
            "commands": len(self.registry),
        }
