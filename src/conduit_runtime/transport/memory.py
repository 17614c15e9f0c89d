"""In-memory loopback connections.

Used to run an executor host in the same process as the runtime, and by
tests that need both ends of a channel without a network.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from .base import Connection, ConnectionClosed

_CLOSED = object()


class MemoryConnection(Connection):
    """One end of a loopback pair built from two asyncio queues."""

    def __init__(self, inbox: asyncio.Queue, outbox: asyncio.Queue, name: str = "memory") -> None:
        self.name = name
        self._inbox = inbox
        self._outbox = outbox
        self._closed = False
        self.sent: list[str] = []

    @classmethod
    def pair(cls) -> tuple[MemoryConnection, MemoryConnection]:
        """Create two connected ends: (runtime side, executor side)."""
        a_to_b: asyncio.Queue = asyncio.Queue()
        b_to_a: asyncio.Queue = asyncio.Queue()
        return cls(b_to_a, a_to_b, "runtime"), cls(a_to_b, b_to_a, "executor")

    @property
    def is_connected(self) -> bool:
        return not self._closed

    async def send_text(self, data: str) -> None:
        if self._closed:
            raise ConnectionClosed(f"{self.name} connection is closed")
        self.sent.append(data)
        await self._outbox.put(data)

    async def send_bytes(self, data: bytes) -> None:
        """Send one binary frame."""
        if self._closed:
            raise ConnectionClosed(f"{self.name} connection is closed")
        await self._outbox.put(data)

    async def receive_text(self) -> AsyncIterator[str | bytes]:
        while not self._closed:
            item = await self._inbox.get()
            if item is _CLOSED:
                self._closed = True
                break
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake both readers
        await self._outbox.put(_CLOSED)
        await self._inbox.put(_CLOSED)
