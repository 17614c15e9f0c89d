"""Progress routing for long-running commands.

Progress events arrive out of band (from the executor, or from caller-side
chunked batches) and are fanned out to listeners keyed by command id. Every
event is also republished to the subscription registry as a
``command_progress`` event so remote subscribers can follow along.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine
from typing import TYPE_CHECKING, Any

from .protocol.messages import ProgressEvent

if TYPE_CHECKING:
    from .subscriptions import SubscriptionRegistry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], Coroutine[Any, Any, None]]
ProgressEmitter = Callable[[ProgressEvent], Awaitable[None]]

PROGRESS_EVENT = "command_progress"
_ALL = "*"


class ProgressRouter:
    """Fan-out of progress events by command id."""

    def __init__(
        self,
        subscriptions: SubscriptionRegistry | None = None,
        *,
        history_limit: int = 256,
    ) -> None:
        self.subscriptions = subscriptions
        self.history_limit = history_limit
        self._listeners: dict[str, list[ProgressCallback]] = {}
        self._latest: OrderedDict[str, ProgressEvent] = OrderedDict()

    def subscribe(self, command_id: str | None, callback: ProgressCallback) -> Callable[[], None]:
        """Listen to one command's progress, or every command's when id is None.

        Returns:
            Unsubscribe function
        """
        key = command_id or _ALL
        self._listeners.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if listeners and callback in listeners:
                listeners.remove(callback)
                if not listeners:
                    del self._listeners[key]

        return unsubscribe

    async def publish(self, event: ProgressEvent) -> None:
        self._remember(event)

        # Copy so listeners may unsubscribe while being called
        listeners = list(self._listeners.get(event.command_id, []))
        listeners += self._listeners.get(_ALL, [])

        for callback in listeners:
            try:
                await callback(event)
            except Exception:
                logger.exception(f"Error in progress listener for {event.command_id}")

        if self.subscriptions is not None:
            await self.subscriptions.publish(PROGRESS_EVENT, event.to_dict())

    def latest(self, command_id: str) -> ProgressEvent | None:
        return self._latest.get(command_id)

    async def stream(self, command_id: str) -> AsyncIterator[ProgressEvent]:
        """Yield a command's progress events until it completes or fails.

        Usage:
            async for event in router.stream(command_id):
                print(event.progress)
        """
        last = self._latest.get(command_id)
        if last is not None and last.status.is_terminal:
            yield last
            return

        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()

        async def on_event(event: ProgressEvent) -> None:
            await queue.put(event)

        unsubscribe = self.subscribe(command_id, on_event)
        try:
            while True:
                event = await queue.get()
                yield event
                if event.status.is_terminal:
                    break
        finally:
            unsubscribe()

    def _remember(self, event: ProgressEvent) -> None:
        self._latest[event.command_id] = event
        self._latest.move_to_end(event.command_id)
        while len(self._latest) > self.history_limit:
            self._latest.popitem(last=False)

    def clear(self) -> None:
        self._listeners.clear()
        self._latest.clear()
