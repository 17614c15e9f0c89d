"""Unit tests for progress routing."""

from __future__ import annotations

import asyncio

import pytest

from conduit_runtime.progress import PROGRESS_EVENT, ProgressRouter
from conduit_runtime.protocol.messages import ProgressEvent, ProgressStatus
from conduit_runtime.subscriptions import SubscriptionRegistry


def _event(command_id: str, status: ProgressStatus, progress: int) -> ProgressEvent:
    return ProgressEvent(
        command_id=command_id,
        command_type="scan_text_nodes",
        status=status,
        progress=progress,
    )


class TestProgressRouter:
    """Tests for ProgressRouter."""

    @pytest.mark.asyncio
    async def test_listeners_keyed_by_command(self):
        router = ProgressRouter()
        mine: list[int] = []
        everything: list[str] = []

        async def on_mine(event: ProgressEvent) -> None:
            mine.append(event.progress)

        async def on_any(event: ProgressEvent) -> None:
            everything.append(event.command_id)

        router.subscribe("cmd_a", on_mine)
        router.subscribe(None, on_any)

        await router.publish(_event("cmd_a", ProgressStatus.STARTED, 0))
        await router.publish(_event("cmd_b", ProgressStatus.STARTED, 0))

        assert mine == [0]
        assert everything == ["cmd_a", "cmd_b"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        router = ProgressRouter()
        seen: list[int] = []

        async def on_event(event: ProgressEvent) -> None:
            seen.append(event.progress)

        unsubscribe = router.subscribe("cmd_a", on_event)
        await router.publish(_event("cmd_a", ProgressStatus.STARTED, 0))
        unsubscribe()
        unsubscribe()
        await router.publish(_event("cmd_a", ProgressStatus.COMPLETED, 100))

        assert seen == [0]

    @pytest.mark.asyncio
    async def test_failing_listener_isolated(self):
        router = ProgressRouter()
        seen: list[int] = []

        async def broken(event: ProgressEvent) -> None:
            raise RuntimeError("listener failed")

        async def healthy(event: ProgressEvent) -> None:
            seen.append(event.progress)

        router.subscribe("cmd_a", broken)
        router.subscribe("cmd_a", healthy)
        await router.publish(_event("cmd_a", ProgressStatus.STARTED, 0))

        assert seen == [0]

    @pytest.mark.asyncio
    async def test_latest(self):
        router = ProgressRouter()

        await router.publish(_event("cmd_a", ProgressStatus.STARTED, 0))
        await router.publish(_event("cmd_a", ProgressStatus.IN_PROGRESS, 35))

        assert router.latest("cmd_a").progress == 35
        assert router.latest("cmd_x") is None

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        router = ProgressRouter(history_limit=2)

        for name in ("a", "b", "c"):
            await router.publish(_event(name, ProgressStatus.STARTED, 0))

        assert router.latest("a") is None
        assert router.latest("c") is not None

    @pytest.mark.asyncio
    async def test_stream_ends_at_terminal_status(self):
        router = ProgressRouter()

        async def consume() -> list[int]:
            return [event.progress async for event in router.stream("cmd_a")]

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await router.publish(_event("cmd_a", ProgressStatus.STARTED, 0))
        await router.publish(_event("cmd_a", ProgressStatus.IN_PROGRESS, 50))
        await router.publish(_event("cmd_a", ProgressStatus.COMPLETED, 100))

        assert await asyncio.wait_for(consumer, 1) == [0, 50, 100]

    @pytest.mark.asyncio
    async def test_stream_after_completion(self):
        router = ProgressRouter()
        await router.publish(_event("cmd_a", ProgressStatus.ERROR, 40))

        events = [event async for event in router.stream("cmd_a")]

        assert [e.status for e in events] == [ProgressStatus.ERROR]

    @pytest.mark.asyncio
    async def test_republished_as_subscription_event(self):
        subscriptions = SubscriptionRegistry()
        received: list[dict] = []

        async def sink(message: dict) -> None:
            received.append(message)

        subscriptions.subscribe(PROGRESS_EVENT, sink, {"commandId": "cmd_a"})
        router = ProgressRouter(subscriptions)

        await router.publish(_event("cmd_a", ProgressStatus.STARTED, 0))
        await router.publish(_event("cmd_b", ProgressStatus.STARTED, 0))

        assert len(received) == 1
        assert received[0]["event"] == "command_progress"
        assert received[0]["payload"]["commandId"] == "cmd_a"
        assert received[0]["payload"]["status"] == "started"
