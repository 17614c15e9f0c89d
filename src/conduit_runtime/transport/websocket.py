"""WebSocket connections.

- StarletteConnection: server side, wraps an accepted starlette WebSocket
  (the executor dials in to the runtime)
- WebSocketClientConnection: client side, dials out with ``websockets``
  (the runtime connects to an executor or relay URL)
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import websockets
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from .base import Connection, ConnectionClosed

logger = logging.getLogger(__name__)


class StarletteConnection(Connection):
    """Server-side connection over an accepted starlette WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._connected = True
        self._send_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected and self._websocket.client_state == WebSocketState.CONNECTED

    async def send_text(self, data: str) -> None:
        async with self._send_lock:
            if not self.is_connected:
                raise ConnectionClosed("WebSocket is closed")
            await self._websocket.send_text(data)

    async def receive_text(self) -> AsyncIterator[str | bytes]:
        try:
            while self.is_connected:
                message = await self._websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.info(f"Executor WebSocket disconnected ({message.get('code')})")
                    break
                text = message.get("text")
                yield text if text is not None else message.get("bytes") or b""
        except WebSocketDisconnect:
            logger.info("Executor WebSocket disconnected")
        finally:
            self._connected = False

    async def close(self, code: int = 1000) -> None:
        if not self._connected:
            return
        self._connected = False
        if self._websocket.client_state == WebSocketState.CONNECTED:
            await self._websocket.close(code=code)


class WebSocketClientConnection(Connection):
    """Client-side connection dialled with the ``websockets`` library.

    When ``channel`` is set, a ``join`` frame is sent right after connecting
    so a relay can pair this connection with the executor on that channel.
    """

    def __init__(
        self,
        url: str,
        *,
        channel: str | None = None,
        ping_interval: float | None = 30,
        ping_timeout: float | None = 10,
        open_timeout: float | None = 10,
    ) -> None:
        self.url = url
        self.channel = channel
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.open_timeout = open_timeout
        self._websocket: Any = None

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None

    async def connect(self) -> None:
        """Open the socket, raising ConnectionClosed if the URL cannot be reached."""
        try:
            self._websocket = await websockets.connect(
                self.url,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                open_timeout=self.open_timeout,
            )
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            raise ConnectionClosed(f"Cannot connect to {self.url}: {e}") from e
        logger.info(f"Connected to executor at {self.url}")
        if self.channel:
            await self.send_text(json.dumps({"type": "join", "channel": self.channel}))

    async def send_text(self, data: str) -> None:
        if self._websocket is None:
            raise ConnectionClosed(f"Not connected to {self.url}")
        try:
            await self._websocket.send(data)
        except websockets.ConnectionClosed as e:
            self._websocket = None
            raise ConnectionClosed(str(e)) from e

    async def receive_text(self) -> AsyncIterator[str | bytes]:
        if self._websocket is None:
            return
        try:
            async for frame in self._websocket:
                yield frame
        except websockets.ConnectionClosed as e:
            logger.info(f"Executor connection closed: {e}")
        finally:
            self._websocket = None

    async def close(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            await websocket.close()
