"""Unit tests for executor implementations and loopback connections."""

from __future__ import annotations

import asyncio

import pytest

from conduit_runtime.channel import CommandChannel
from conduit_runtime.errors import ExecutionError, ExecutorUnavailableError
from conduit_runtime.executor import Executor, LocalExecutor, RemoteExecutor
from conduit_runtime.transport import ConnectionClosed, MemoryConnection


async def _ok(params, ctx):
    return {"ok": params}


async def _boom(params, ctx):
    raise KeyError("nodeId")


class TestLocalExecutor:
    """Tests for LocalExecutor."""

    def test_satisfies_protocol(self):
        assert isinstance(LocalExecutor({}), Executor)
        assert isinstance(RemoteExecutor(), Executor)

    @pytest.mark.asyncio
    async def test_records_calls(self):
        executor = LocalExecutor({"ok": _ok})

        assert await executor.execute("ok", {"a": 1}) == {"ok": {"a": 1}}
        assert executor.calls == [("ok", {"a": 1})]

    @pytest.mark.asyncio
    async def test_wraps_handler_errors(self):
        executor = LocalExecutor({"boom": _boom})

        with pytest.raises(ExecutionError) as exc_info:
            await executor.execute("boom", {})

        assert exc_info.value.command == "boom"
        assert isinstance(exc_info.value.__cause__, KeyError)


class TestRemoteExecutor:
    """Tests for RemoteExecutor attach/detach."""

    @pytest.mark.asyncio
    async def test_unavailable_without_channel(self):
        executor = RemoteExecutor()

        assert executor.is_connected is False
        with pytest.raises(ExecutorUnavailableError):
            await executor.execute("get_document_info", {})

    @pytest.mark.asyncio
    async def test_attach_and_detach(self):
        runtime_end, _ = MemoryConnection.pair()
        channel = CommandChannel(runtime_end)
        await channel.start()
        executor = RemoteExecutor()

        executor.attach(channel)
        assert executor.is_connected is True

        executor.detach(CommandChannel(runtime_end))
        assert executor.channel is channel

        executor.detach(channel)
        assert executor.channel is None
        await channel.close()

    @pytest.mark.asyncio
    async def test_closed_channel_is_not_connected(self):
        runtime_end, _ = MemoryConnection.pair()
        channel = CommandChannel(runtime_end)
        await channel.start()
        executor = RemoteExecutor(channel)

        await channel.close()

        assert executor.is_connected is False
        with pytest.raises(ExecutorUnavailableError):
            await executor.execute("get_document_info", {})


class TestMemoryConnection:
    """Tests for the loopback pair."""

    @pytest.mark.asyncio
    async def test_frames_cross_over(self):
        a, b = MemoryConnection.pair()
        await a.send_text("hello")

        received = await asyncio.wait_for(b.receive_text().__anext__(), 1)

        assert received == "hello"
        assert a.sent == ["hello"]

    @pytest.mark.asyncio
    async def test_close_ends_both_readers(self):
        a, b = MemoryConnection.pair()

        async def drain(connection: MemoryConnection) -> list[str]:
            return [frame async for frame in connection.receive_text()]

        readers = [asyncio.create_task(drain(a)), asyncio.create_task(drain(b))]
        await asyncio.sleep(0)
        await a.close()

        assert await asyncio.wait_for(asyncio.gather(*readers), 1) == [[], []]
        assert b.is_connected is False

    @pytest.mark.asyncio
    async def test_send_after_close(self):
        a, _ = MemoryConnection.pair()
        await a.close()

        with pytest.raises(ConnectionClosed):
            await a.send_text("late")
