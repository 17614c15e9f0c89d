"""Subscription commands, handled locally without the executor."""

from __future__ import annotations

from typing import Any

from ..errors import ValidationError
from ..registry import CommandContext, CommandFamily, CommandRegistry
from .schemas import SubscribeParams, UnsubscribeParams


def register_event_commands(registry: CommandRegistry) -> None:
    @registry.command("subscribe_event", schema=SubscribeParams, family=CommandFamily.LOCAL)
    async def subscribe_event(params: SubscribeParams, ctx: CommandContext) -> dict[str, Any]:
        """Subscribe the calling connection to a host event type."""
        if ctx.sink is None:
            raise ValidationError(
                "subscribe_event needs an event stream; call it over /ws/events",
                field="eventType",
            )
        subscription_id = ctx.subscriptions.subscribe(
            params.event_type.value, ctx.sink, params.filter
        )
        return {"subscriptionId": subscription_id, "eventType": params.event_type.value}

    @registry.command("unsubscribe_event", schema=UnsubscribeParams, family=CommandFamily.LOCAL)
    async def unsubscribe_event(params: UnsubscribeParams, ctx: CommandContext) -> dict[str, Any]:
        """Remove a subscription. Unknown ids are not an error."""
        removed = ctx.subscriptions.unsubscribe(params.subscription_id)
        return {"subscriptionId": params.subscription_id, "removed": removed}
