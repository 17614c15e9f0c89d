"""Health check endpoint."""

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route


async def health(request: Request) -> JSONResponse:
    """Report runtime status and whether an executor is attached."""
    return JSONResponse(request.app.state.runtime.health())


health_routes = [
    Route("/health", health, methods=["GET"]),
]
