"""Event subscription registry.

Callers subscribe to host-originated events by type. When the executor emits
an event, every matching subscription receives
``{"event": ..., "payload": ..., "subscriptionId": ...}`` on its sink.

The registry keeps a back-reference to each sink only; the connection that
owns the sink calls ``remove_sink`` when it goes away.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

EventSink = Callable[[dict[str, Any]], Awaitable[None]]

ALL_EVENTS = "*"


class EventType(str, Enum):
    """Event types callers may subscribe to."""

    SELECTION_CHANGE = "selection_change"
    DOCUMENT_CHANGE = "document_change"
    PAGE_CHANGE = "page_change"
    COMMAND_PROGRESS = "command_progress"
    ALL = ALL_EVENTS


def _matches_filter(filter: dict[str, Any], payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    for key, expected in filter.items():
        if key not in payload:
            return False
        actual = payload[key]
        if isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


@dataclass
class Subscription:
    subscription_id: str
    event_type: str
    sink: EventSink
    filter: dict[str, Any] | None = None

    def matches(self, event_type: str, payload: Any) -> bool:
        """Check type and filter.

        Every filter key must equal the payload's value; when the payload
        value is a list, membership counts. No filter matches everything.
        """
        if self.event_type != ALL_EVENTS and self.event_type != event_type:
            return False
        if not self.filter:
            return True
        return _matches_filter(self.filter, payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriptionId": self.subscription_id,
            "eventType": self.event_type,
            "filter": self.filter,
        }


class SubscriptionRegistry:
    """Subscriptions keyed by id.

    Only touched from the event loop thread, so no locking is needed.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    def subscribe(
        self,
        event_type: str,
        sink: EventSink,
        filter: dict[str, Any] | None = None,
    ) -> str:
        """Register a sink for an event type.

        Returns:
            Fresh subscription id
        """
        subscription_id = f"sub_{uuid.uuid4().hex[:16]}"
        self._subscriptions[subscription_id] = Subscription(
            subscription_id=subscription_id,
            event_type=str(event_type.value if isinstance(event_type, Enum) else event_type),
            sink=sink,
            filter=filter or None,
        )
        logger.debug(f"Subscribed {subscription_id} to {event_type}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Unknown ids are ignored.

        Returns:
            True if a subscription was removed
        """
        removed = self._subscriptions.pop(subscription_id, None) is not None
        if removed:
            logger.debug(f"Unsubscribed {subscription_id}")
        return removed

    def remove_sink(self, sink: EventSink) -> int:
        """Drop every subscription delivering to ``sink``."""
        doomed = [sid for sid, sub in self._subscriptions.items() if sub.sink == sink]
        for subscription_id in doomed:
            del self._subscriptions[subscription_id]
        return len(doomed)

    async def publish(self, event_type: str, payload: Any) -> int:
        """Deliver an event to every matching subscription.

        Sinks run concurrently; one failing sink is logged and does not stop
        delivery to the others.

        Returns:
            Number of successful deliveries
        """
        matching = [
            sub for sub in list(self._subscriptions.values()) if sub.matches(event_type, payload)
        ]
        if not matching:
            return 0

        results = await asyncio.gather(
            *(
                sub.sink(
                    {"event": event_type, "payload": payload, "subscriptionId": sub.subscription_id}
                )
                for sub in matching
            ),
            return_exceptions=True,
        )

        delivered = 0
        for sub, result in zip(matching, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Delivery of {event_type} to {sub.subscription_id} failed: {result!r}"
                )
            else:
                delivered += 1
        return delivered

    def get(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    def list_subscriptions(self, event_type: str | None = None) -> list[Subscription]:
        subs = list(self._subscriptions.values())
        if event_type is not None:
            subs = [s for s in subs if s.event_type == event_type]
        return subs

    def __len__(self) -> int:
        return len(self._subscriptions)
