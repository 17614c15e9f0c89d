"""Conduit Runtime CLI.

Usage:
    conduit-runtime serve                          # HTTP server on 127.0.0.1:4100
    conduit-runtime serve --port 8080 --sandbox    # with the in-process sandbox executor
    conduit-runtime serve --sandbox --document doc.yaml
    conduit-runtime health                         # Check a running server
    conduit-runtime tools                          # List the command catalogue
    conduit-runtime call get_node_info --params '{"nodeId": "1:2"}'
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any

import click
import httpx

from .config import RuntimeConfig

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

DEFAULT_URL = "http://127.0.0.1:4100"


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


@click.group()
@click.option("--log-level", default=None, help="Logging level (default: CONDUIT_LOG_LEVEL)")
def main(log_level: str | None) -> None:
    """Conduit Runtime - command bridge between tool callers and a design executor."""
    level = (log_level or os.environ.get("CONDUIT_LOG_LEVEL") or "INFO").upper()
    if log_level:
        os.environ["CONDUIT_LOG_LEVEL"] = level

    # Logs go to stderr; command output goes to stdout
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=4100, help="Port to bind to")
@click.option("--sandbox", is_flag=True, help="Attach the in-process sandbox executor")
@click.option(
    "--document",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file seeding the sandbox document (implies --sandbox)",
)
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(host: str, port: int, sandbox: bool, document: str | None, reload: bool) -> None:
    """Run the HTTP/WebSocket server."""
    if document:
        sandbox = True

    # Pass options via environment variables for the app factory
    os.environ["CONDUIT_HOST"] = host
    os.environ["CONDUIT_PORT"] = str(port)
    if sandbox:
        os.environ["CONDUIT_SANDBOX"] = "1"
    else:
        os.environ.pop("CONDUIT_SANDBOX", None)
    if document:
        os.environ["CONDUIT_SANDBOX_DOCUMENT"] = os.path.abspath(document)
    else:
        os.environ.pop("CONDUIT_SANDBOX_DOCUMENT", None)

    try:
        RuntimeConfig.from_env()
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    _run_http_server(host, port, reload, sandbox)


def _run_http_server(host: str, port: int, reload: bool, sandbox: bool) -> None:
    """Run HTTP server mode."""
    import uvicorn

    suffix = " (sandbox executor)" if sandbox else ""
    click.echo(f"Starting Conduit runtime on http://{host}:{port}{suffix}", err=True)
    click.echo(f"  Executor endpoint: ws://{host}:{port}/ws/executor", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        "conduit_runtime.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@main.command()
@click.option("--url", default=DEFAULT_URL, help="Server URL")
def health(url: str) -> None:
    """Check server health."""
    _do_health_check(url)


def _do_health_check(url: str) -> None:
    """Check server health and report the executor link."""
    response = asyncio.run(_send_request(url, "GET", "/health"))
    if response.status_code != 200:
        click.echo(f"Server returned {response.status_code}", err=True)
        sys.exit(1)

    data = response.json()
    executor = "attached" if data.get("executor_connected") else "not attached"
    click.echo(
        f"Runtime at {url} is healthy: executor {executor}, "
        f"{data.get('commands', 0)} command(s), {data.get('pending_requests', 0)} pending"
    )


async def _send_request(url: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
    """Send one request to a running runtime; exits when it is unreachable."""
    try:
        async with httpx.AsyncClient(timeout=None) as client:
            return await client.request(method, f"{url}{path}", **kwargs)
    except httpx.ConnectError:
        click.echo(f"Cannot connect to server at {url}", err=True)
        sys.exit(1)


@main.command()
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
def tools(output_format: str) -> None:
    """List the command catalogue.

    Examples:

        # Table of commands
        conduit-runtime tools

        # Full catalogue with input schemas
        conduit-runtime tools --format json
    """
    from .commands import build_registry

    registry = build_registry(RuntimeConfig.from_env())
    catalogue = registry.describe()

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(catalogue, indent=2, ensure_ascii=False))
        return

    click.echo(f"{'Command':<28} {'Family':<10} {'Batch keys':<22} Description")
    click.echo("-" * 100)
    for entry in catalogue:
        batch = entry.get("batch")
        keys = f"{batch['singular']}/{batch['plural']}" if batch else ""
        click.echo(
            f"{entry['name']:<28} {entry['family']:<10} {keys:<22} "
            f"{truncate(entry.get('description'), 38)}"
        )
    click.echo(f"\nTotal: {len(catalogue)} command(s)")


@main.command()
@click.argument("name")
@click.option("--params", "-p", default="{}", help="Command params as a JSON object")
@click.option("--url", default=DEFAULT_URL, help="Server URL")
def call(name: str, params: str, url: str) -> None:
    """Call a command on a running server.

    Examples:

        conduit-runtime call get_document_info

        conduit-runtime call rename_layer -p '{"rename": {"nodeId": "1:2", "newName": "Hero"}}'
    """
    try:
        payload: Any = json.loads(params)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--params") from e

    response = asyncio.run(_send_request(url, "POST", f"/tools/{name}", json=payload))
    body = response.json()
    if response.status_code != 200:
        error = body.get("error", {})
        message = error.get("message", body)
        click.echo(f"{name} failed ({response.status_code}): {message}", err=True)
        # Per-unit outcomes of a failed batch
        if "results" in error:
            click.echo(json.dumps(error["results"], indent=2, ensure_ascii=False))
        sys.exit(1)
    click.echo(json.dumps(body.get("result"), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
