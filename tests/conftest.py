"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from conduit_runtime.batch import BatchDispatcher
from conduit_runtime.commands import build_registry
from conduit_runtime.config import RuntimeConfig
from conduit_runtime.dispatcher import CommandDispatcher
from conduit_runtime.errors import ExecutionError
from conduit_runtime.progress import ProgressRouter
from conduit_runtime.protocol.messages import ProgressEvent
from conduit_runtime.sandbox import SandboxDocument
from conduit_runtime.subscriptions import SubscriptionRegistry


class FakeExecutor:
    """Executor stub that records calls and answers from a table.

    ``fail`` maps a node id to an error message; any call whose params carry
    that ``nodeId`` (or ``childId``) raises ExecutionError.
    """

    def __init__(self, fail: dict[str, str] | None = None) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.timeouts: list[float | None] = []
        self.fail = fail or {}

    async def execute(self, command: str, params: Any, *, timeout: float | None = None) -> Any:
        self.calls.append((command, params))
        self.timeouts.append(timeout)
        node_id = None
        if isinstance(params, dict):
            node_id = params.get("nodeId") or params.get("childId")
        if node_id in self.fail:
            raise ExecutionError(self.fail[node_id], command=command)
        return {"command": command, "echo": params}


@pytest.fixture
def fast_config() -> RuntimeConfig:
    """Config with no sleeps between chunked items."""
    return RuntimeConfig(item_delay=0, chunk_delay=0)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def dispatcher(fast_config: RuntimeConfig, fake_executor: FakeExecutor) -> CommandDispatcher:
    subscriptions = SubscriptionRegistry()
    return CommandDispatcher(
        build_registry(fast_config),
        fake_executor,
        subscriptions=subscriptions,
        progress=ProgressRouter(subscriptions),
        batch=BatchDispatcher(item_delay=0, chunk_delay=0),
    )


@pytest.fixture
def document() -> SandboxDocument:
    """Card frame (1:1) holding a title (1:2) and body (1:3) text, plus a rectangle (1:4)."""
    return SandboxDocument.from_dict(
        {
            "name": "Demo",
            "nodes": [
                {
                    "type": "FRAME",
                    "name": "Card",
                    "children": [
                        {"type": "TEXT", "name": "Title", "characters": "Hello"},
                        {"type": "TEXT", "name": "Body", "characters": "World"},
                    ],
                },
                {"type": "RECTANGLE", "name": "Background", "width": 200, "height": 50},
            ],
        }
    )


@pytest.fixture
def collect_progress():
    """Returns a function recording every event published on a router."""

    def collect(router: ProgressRouter) -> list[ProgressEvent]:
        events: list[ProgressEvent] = []

        async def on_event(event: ProgressEvent) -> None:
            events.append(event)

        router.subscribe(None, on_event)
        return events

    return collect
