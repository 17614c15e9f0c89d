"""Unit tests for the command channel and executor host over a loopback pair."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from conduit_runtime.channel import ChannelState, CommandChannel
from conduit_runtime.errors import (
    ExecutionError,
    ExecutorUnavailableError,
    TransportTimeoutError,
)
from conduit_runtime.host import ExecutorHost, HostContext
from conduit_runtime.progress import ProgressRouter
from conduit_runtime.protocol.messages import ProgressEvent, ProgressStatus
from conduit_runtime.subscriptions import SubscriptionRegistry
from conduit_runtime.transport import MemoryConnection


async def _echo(params: dict[str, Any], ctx: HostContext) -> Any:
    return {"echo": params}


async def _slow(params: dict[str, Any], ctx: HostContext) -> Any:
    await asyncio.sleep(params.get("delay", 0.05))
    return params.get("tag")


async def _fail(params: dict[str, Any], ctx: HostContext) -> Any:
    raise RuntimeError("Node not found: 9:9")


async def _progress(params: dict[str, Any], ctx: HostContext) -> Any:
    for step in (0, 50, 100):
        status = ProgressStatus.COMPLETED if step == 100 else ProgressStatus.IN_PROGRESS
        await ctx.emit_progress(
            ProgressEvent(
                command_id=ctx.request_id,
                command_type=ctx.command,
                status=status,
                progress=step,
            )
        )
        await asyncio.sleep(0.05)
    return "scanned"


async def _selection(params: dict[str, Any], ctx: HostContext) -> Any:
    await ctx.emit_event("selection_change", {"selectedNodeIds": params["nodeIds"]})
    return None


HANDLERS = {
    "echo": _echo,
    "slow": _slow,
    "fail": _fail,
    "progress": _progress,
    "selection": _selection,
}


class Loopback:
    """A channel wired to an ExecutorHost through MemoryConnection.pair()."""

    def __init__(self, **channel_kwargs: Any) -> None:
        self.runtime_end, self.executor_end = MemoryConnection.pair()
        self.host = ExecutorHost(self.executor_end, HANDLERS)
        self.channel = CommandChannel(self.runtime_end, **channel_kwargs)
        self.host_task: asyncio.Task | None = None

    async def __aenter__(self) -> Loopback:
        self.host_task = asyncio.create_task(self.host.run())
        await self.channel.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.channel.close()
        if self.host_task is not None:
            await asyncio.wait_for(self.host_task, 1)


# =============================================================================
# Request / reply
# =============================================================================


class TestRequestReply:
    """Tests for CommandChannel.request against a live host."""

    @pytest.mark.asyncio
    async def test_request_round_trip(self):
        async with Loopback() as loop:
            result = await loop.channel.request("echo", {"nodeId": "1:2"})

        assert result == {"echo": {"nodeId": "1:2"}}

    @pytest.mark.asyncio
    async def test_envelope_shape(self):
        async with Loopback() as loop:
            await loop.channel.request("echo", {"a": 1})
            sent = json.loads(loop.runtime_end.sent[0])

        assert sent["type"] == "execute-command"
        assert sent["command"] == "echo"
        assert sent["params"] == {"a": 1}
        assert len(sent["id"]) == 32

    @pytest.mark.asyncio
    async def test_replies_matched_out_of_order(self):
        async with Loopback() as loop:
            slow = asyncio.create_task(loop.channel.request("slow", {"delay": 0.1, "tag": "A"}))
            fast = asyncio.create_task(loop.channel.request("slow", {"delay": 0.01, "tag": "B"}))
            results = await asyncio.gather(slow, fast)

        assert results == ["A", "B"]

    @pytest.mark.asyncio
    async def test_command_error_becomes_execution_error(self):
        async with Loopback() as loop:
            with pytest.raises(ExecutionError) as exc_info:
                await loop.channel.request("fail", {})

        assert "Node not found" in exc_info.value.message
        assert exc_info.value.command == "fail"

    @pytest.mark.asyncio
    async def test_unknown_executor_command(self):
        async with Loopback() as loop:
            with pytest.raises(ExecutionError, match="Unknown command: nope"):
                await loop.channel.request("nope", {})

    @pytest.mark.asyncio
    async def test_timeout_is_advisory(self):
        """The caller stops waiting; the late reply is dropped."""
        async with Loopback() as loop:
            with pytest.raises(TransportTimeoutError):
                await loop.channel.request("slow", {"delay": 0.1, "tag": "late"}, timeout=0.02)
            await asyncio.sleep(0.15)

            assert loop.channel.pending_count == 0
            assert loop.channel.state == ChannelState.OPEN

    @pytest.mark.asyncio
    async def test_progress_keeps_request_alive(self):
        router = ProgressRouter()
        events: list[ProgressEvent] = []

        async def on_event(event: ProgressEvent) -> None:
            events.append(event)

        router.subscribe(None, on_event)
        async with Loopback(progress=router) as loop:
            result = await loop.channel.request("progress", {}, timeout=0.1)

        assert result == "scanned"
        assert [e.progress for e in events] == [0, 50, 100]


# =============================================================================
# Routing
# =============================================================================


class TestRouting:
    """Tests for the reader loop's classification of inbound frames."""

    @pytest.mark.asyncio
    async def test_host_events_reach_subscribers(self):
        subscriptions = SubscriptionRegistry()
        received: list[dict] = []

        async def sink(message: dict) -> None:
            received.append(message)

        subscriptions.subscribe("selection_change", sink)
        async with Loopback(subscriptions=subscriptions) as loop:
            await loop.channel.request("selection", {"nodeIds": ["1:2"]})

        assert received[0]["event"] == "selection_change"
        assert received[0]["payload"] == {"selectedNodeIds": ["1:2"]}

    @pytest.mark.asyncio
    async def test_malformed_frames_dropped(self):
        async with Loopback() as loop:
            await loop.executor_end.send_text("not json")
            await loop.executor_end.send_text(json.dumps({"type": "mystery"}))
            await loop.executor_end.send_text(json.dumps([1, 2]))
            result = await loop.channel.request("echo", {})

            assert loop.channel.dropped == 3

        assert result == {"echo": {}}

    @pytest.mark.asyncio
    async def test_binary_garbage_keeps_channel_open(self):
        async with Loopback() as loop:
            await loop.executor_end.send_bytes(b'{"type": "command-result", "id": "\xff"}')
            await loop.executor_end.send_bytes(b"\x80\x81\x82")
            result = await loop.channel.request("echo", {"after": "garbage"})

            assert loop.channel.dropped == 2
            assert loop.channel.state == ChannelState.OPEN
            assert loop.channel.is_open is True

        assert result == {"echo": {"after": "garbage"}}

    @pytest.mark.asyncio
    async def test_stale_reply_ignored(self):
        async with Loopback() as loop:
            await loop.executor_end.send_text(
                json.dumps({"type": "command-result", "id": "unknown", "result": 1})
            )
            assert await loop.channel.request("echo", {}) == {"echo": {}}


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for close and teardown."""

    @pytest.mark.asyncio
    async def test_disconnect_rejects_pending(self):
        async with Loopback() as loop:
            pending = asyncio.create_task(loop.channel.request("slow", {"delay": 5}))
            await asyncio.sleep(0.01)
            await loop.executor_end.close()

            with pytest.raises(ExecutorUnavailableError):
                await pending
            await asyncio.wait_for(loop.channel.wait_closed(), 1)

    @pytest.mark.asyncio
    async def test_request_on_closed_channel(self):
        async with Loopback() as loop:
            await loop.channel.close()

            with pytest.raises(ExecutorUnavailableError):
                await loop.channel.request("echo", {})

    @pytest.mark.asyncio
    async def test_admin_messages(self):
        async with Loopback() as loop:
            await loop.channel.update_settings(chunkSize=3)
            await loop.channel.notify("Hello")
            # A round trip guarantees the host has read the admin frames
            await loop.channel.request("echo", {})

            assert loop.host.settings["chunkSize"] == 3
            assert loop.host.notifications == ["Hello"]

    @pytest.mark.asyncio
    async def test_close_plugin_stops_host(self):
        async with Loopback() as loop:
            await loop.channel.close_plugin()
            await asyncio.wait_for(loop.host_task, 1)

            assert loop.host.closed is True
            await asyncio.wait_for(loop.channel.wait_closed(), 1)
