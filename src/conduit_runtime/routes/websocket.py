"""WebSocket endpoints.

/ws/executor
    The executor (plugin bridge) connects here. The runtime binds a command
    channel to the socket; only one executor may be attached at a time.

/ws/events
    Callers subscribe to host events and may also call commands:

    → {"type": "subscribe", "eventType": "selection_change", "filter": {...}}
    ← {"type": "subscribed", "subscriptionId": "sub_...", "eventType": "..."}
    → {"type": "unsubscribe", "subscriptionId": "sub_..."}
    ← {"type": "unsubscribed", "subscriptionId": "sub_...", "removed": true}
    → {"type": "call", "id": "1", "command": "move_node", "params": {...}}
    ← {"type": "result", "id": "1", "result": {...}}
    ← {"type": "error", "id": "1", "error": {"code": "...", "message": "..."}}
    ← {"event": "selection_change", "payload": {...}, "subscriptionId": "sub_..."}

    All of a connection's subscriptions are removed when it disconnects.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from ..dispatcher import result_to_json
from ..errors import ConduitError
from ..transport import StarletteConnection

logger = logging.getLogger(__name__)

EXECUTOR_BUSY_CODE = 4009


async def websocket_executor_endpoint(websocket: WebSocket) -> None:
    runtime = websocket.app.state.runtime
    await websocket.accept()

    if runtime.executor.is_connected:
        logger.warning("Rejecting second executor connection")
        await websocket.close(code=EXECUTOR_BUSY_CODE, reason="Executor already connected")
        return

    channel = await runtime.attach(StarletteConnection(websocket))
    try:
        await channel.wait_closed()
    finally:
        await runtime.detach(channel)


class EventSessionHandler:
    """Serves one /ws/events connection."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.runtime = websocket.app.state.runtime
        self._send_lock = asyncio.Lock()
        self._calls: set[asyncio.Task] = set()

    async def send(self, message: dict[str, Any]) -> None:
        """Event sink for this connection."""
        async with self._send_lock:
            if self.websocket.client_state == WebSocketState.CONNECTED:
                await self.websocket.send_text(json.dumps(message))

    async def handle(self) -> None:
        await self.websocket.accept()
        try:
            while True:
                data = await self.websocket.receive_text()
                try:
                    message = json.loads(data)
                except json.JSONDecodeError as e:
                    await self._send_error(None, "invalid_json", str(e))
                    continue
                if not isinstance(message, dict):
                    await self._send_error(None, "invalid_message", "Expected an object")
                    continue
                await self._handle_message(message)
        except WebSocketDisconnect:
            logger.info("Event WebSocket client disconnected")
        finally:
            await self._cleanup()

    async def _handle_message(self, message: dict[str, Any]) -> None:
        msg_type = message.get("type")
        if msg_type == "subscribe":
            params = {"eventType": message.get("eventType")}
            if message.get("filter") is not None:
                params["filter"] = message["filter"]
            await self._call(message.get("id"), "subscribe_event", params, reply_type="subscribed")
        elif msg_type == "unsubscribe":
            params = {"subscriptionId": message.get("subscriptionId")}
            await self._call(
                message.get("id"), "unsubscribe_event", params, reply_type="unsubscribed"
            )
        elif msg_type == "call":
            task = asyncio.create_task(
                self._call(message.get("id"), str(message.get("command")), message.get("params"))
            )
            self._calls.add(task)
            task.add_done_callback(self._calls.discard)
        elif msg_type == "ping":
            await self.send({"type": "pong", "id": message.get("id")})
        else:
            await self._send_error(
                message.get("id"), "invalid_message", f"Unknown type: {msg_type}"
            )

    async def _send_error(self, call_id: Any, code: str, message: str) -> None:
        error = {"code": code, "message": message}
        await self.send({"type": "error", "id": call_id, "error": error})

    async def _call(
        self,
        call_id: Any,
        command: str,
        params: Any,
        *,
        reply_type: str | None = None,
    ) -> None:
        try:
            result = result_to_json(await self.runtime.dispatch(command, params, sink=self.send))
        except ConduitError as e:
            await self.send({"type": "error", "id": call_id, "error": e.to_dict()})
            return

        if reply_type is None:
            await self.send({"type": "result", "id": call_id, "result": result})
        else:
            await self.send({"type": reply_type, "id": call_id, **result})

    async def _cleanup(self) -> None:
        removed = self.runtime.subscriptions.remove_sink(self.send)
        if removed:
            logger.info(f"Removed {removed} subscription(s) for closed connection")
        for task in list(self._calls):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


async def websocket_events_endpoint(websocket: WebSocket) -> None:
    handler = EventSessionHandler(websocket)
    await handler.handle()


websocket_routes = [
    WebSocketRoute("/ws/executor", websocket_executor_endpoint),
    WebSocketRoute("/ws/events", websocket_events_endpoint),
]
