"""Conduit runtime application.

Creates the Starlette ASGI application with all routes.

Routes:
- /health - Runtime health
- /tools, /tools/{name} - Command catalogue and calls
- /ws/executor - Executor (plugin bridge) connection
- /ws/events - Event subscriptions and streamed calls

Configuration comes from the ``CONDUIT_*`` environment variables unless a
RuntimeConfig is passed in. With ``CONDUIT_SANDBOX`` set the app attaches the
in-process sandbox executor on startup.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route, WebSocketRoute

from .config import RuntimeConfig
from .routes import health_routes, tool_routes, websocket_routes
from .runtime import ConduitRuntime
from .sandbox import SandboxDocument

logger = logging.getLogger(__name__)


def create_app(
    config: RuntimeConfig | None = None,
    *,
    runtime: ConduitRuntime | None = None,
) -> Starlette:
    """Create the runtime application.

    Args:
        config: Runtime settings; read from the environment when omitted
        runtime: Pre-built runtime, for embedding and tests

    Returns:
        Configured Starlette application
    """
    if runtime is None:
        runtime = ConduitRuntime(config or RuntimeConfig.from_env())
    config = runtime.config

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if config.sandbox:
            document = (
                SandboxDocument.from_yaml(config.sandbox_document)
                if config.sandbox_document
                else None
            )
            await runtime.start_sandbox(document)
        logger.info(f"Conduit runtime ready with {len(runtime.registry)} commands")
        try:
            yield
        finally:
            await runtime.shutdown()

    routes: list[Route | WebSocketRoute] = []
    routes.extend(health_routes)
    routes.extend(tool_routes)
    routes.extend(websocket_routes)

    # CORS middleware for local development
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.runtime = runtime
    return app


# Lazy singleton for embedded mode
_app: Starlette | None = None


def get_app() -> Starlette:
    """Get or create the application singleton."""
    global _app
    if _app is None:
        _app = create_app()
    return _app
