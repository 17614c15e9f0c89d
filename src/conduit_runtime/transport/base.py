"""Connection abstraction for the executor channel.

A Connection moves JSON text frames in both directions over one logical
link. The channel layer above it owns correlation and routing; connections
only carry frames.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator


class ConnectionClosed(Exception):
    """Raised when sending on a connection that is no longer open."""


class Connection(ABC):
    """One bidirectional text-frame link."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether frames can still be sent."""
        ...

    @abstractmethod
    async def send_text(self, data: str) -> None:
        """Send one frame.

        Raises:
            ConnectionClosed: If the connection is closed
        """
        ...

    @abstractmethod
    def receive_text(self) -> AsyncIterator[str | bytes]:
        """Iterate inbound frames until the connection closes.

        Binary frames are yielded undecoded; the reader rejects any that are
        not UTF-8 JSON.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...
