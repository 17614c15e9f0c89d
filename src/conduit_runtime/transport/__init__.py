"""Connections that carry executor channel frames.

- MemoryConnection: in-process loopback pair
- StarletteConnection: executor dialled in to the runtime's WebSocket route
- WebSocketClientConnection: runtime dials out to an executor or relay
"""

from .base import Connection, ConnectionClosed
from .memory import MemoryConnection
from .websocket import StarletteConnection, WebSocketClientConnection

__all__ = [
    "Connection",
    "ConnectionClosed",
    "MemoryConnection",
    "StarletteConnection",
    "WebSocketClientConnection",
]
