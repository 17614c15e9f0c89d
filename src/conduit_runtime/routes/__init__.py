"""HTTP and WebSocket routes."""

from .health import health_routes
from .tools import tool_routes
from .websocket import websocket_routes

__all__ = ["health_routes", "tool_routes", "websocket_routes"]
