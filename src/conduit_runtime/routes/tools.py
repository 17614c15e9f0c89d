"""Tool-facing HTTP surface.

GET  /tools          catalogue, one entry per command
GET  /tools/{name}   one catalogue entry
POST /tools/{name}   call a command; the JSON body is its params
"""

import json
import logging

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..dispatcher import result_to_json
from ..errors import (
    BatchError,
    ConduitError,
    ExecutionError,
    ExecutorUnavailableError,
    TransportTimeoutError,
    UnknownCommandError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[ConduitError], int] = {
    ValidationError: 422,
    UnknownCommandError: 404,
    BatchError: 409,
    ExecutionError: 502,
    ExecutorUnavailableError: 503,
    TransportTimeoutError: 504,
}


def error_response(error: ConduitError) -> JSONResponse:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(error, cls)),
        500,
    )
    return JSONResponse({"error": error.to_dict()}, status_code=status)


async def list_tools(request: Request) -> JSONResponse:
    runtime = request.app.state.runtime
    return JSONResponse(runtime.registry.describe())


async def get_tool(request: Request) -> JSONResponse:
    runtime = request.app.state.runtime
    name = request.path_params["name"]
    descriptor = runtime.registry.get(name)
    if descriptor is None:
        return error_response(UnknownCommandError(name))
    return JSONResponse(descriptor.to_dict())


async def call_tool(request: Request) -> JSONResponse:
    """Dispatch one command call.

    Example:
        POST /tools/rename_layer
        {"renames": [{"nodeId": "1:2", "newName": "Header"}]}

        200 {"result": {"command": "rename_layer", "success": true, "results": [...]}}
    """
    runtime = request.app.state.runtime
    name = request.path_params["name"]

    body = await request.body()
    try:
        params = json.loads(body) if body else {}
    except json.JSONDecodeError as e:
        return JSONResponse(
            {"error": {"code": "invalid_json", "message": f"Invalid JSON body: {e}"}},
            status_code=400,
        )

    try:
        result = await runtime.dispatch(name, params)
    except ConduitError as e:
        logger.info(f"{name} failed: {e.message}")
        return error_response(e)

    return JSONResponse({"result": result_to_json(result)})


tool_routes = [
    Route("/tools", list_tools, methods=["GET"]),
    Route("/tools/{name}", get_tool, methods=["GET"]),
    Route("/tools/{name}", call_tool, methods=["POST"]),
]
