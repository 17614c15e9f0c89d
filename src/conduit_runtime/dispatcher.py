"""Command dispatch.

``CommandDispatcher.dispatch(name, params)`` is the one entry point callers
use: look the command up, validate, then either run it through the batch
dispatcher or call its handler directly. Unknown names and malformed params
are rejected here, before anything is sent to the executor.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from .batch import BatchDispatcher, BatchResult
from .executor import Executor
from .progress import ProgressRouter
from .registry import CommandContext, CommandRegistry
from .subscriptions import EventSink, SubscriptionRegistry
from .validation import validate_params

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Routes validated calls to command handlers.

    Args:
        registry: Commands available to callers
        executor: Where remote commands are sent
        subscriptions: Event subscription registry (a fresh one if omitted)
        progress: Progress router (a fresh one if omitted)
        batch: Batch dispatcher (defaults if omitted)
    """

    def __init__(
        self,
        registry: CommandRegistry,
        executor: Executor,
        *,
        subscriptions: SubscriptionRegistry | None = None,
        progress: ProgressRouter | None = None,
        batch: BatchDispatcher | None = None,
    ) -> None:
        self.registry = registry
        self.executor = executor
        self.subscriptions = subscriptions or SubscriptionRegistry()
        self.progress = progress or ProgressRouter(self.subscriptions)
        self.batch = batch or BatchDispatcher()

    async def dispatch(
        self,
        name: str,
        params: Any = None,
        *,
        sink: EventSink | None = None,
    ) -> Any:
        """Run one command call.

        Args:
            name: Registered command name
            params: Raw params (decoded JSON)
            sink: Caller's event sink, used by subscription commands

        Returns:
            BatchResult for batch commands, the handler's result otherwise

        Raises:
            UnknownCommandError: ``name`` is not registered
            ValidationError: Params are malformed
            BatchError: A batch failed under its policy
            ExecutionError, TransportTimeoutError, ExecutorUnavailableError:
                A non-batch command failed
        """
        descriptor = self.registry.require(name)
        ctx = CommandContext(
            command=name,
            executor=self.executor,
            subscriptions=self.subscriptions,
            progress=self.progress,
            sink=sink,
            timeout=descriptor.timeout,
        )
        params = {} if params is None else params
        logger.debug(f"Dispatching {name}")

        if descriptor.batch is not None:
            return await self.batch.run(descriptor, params, ctx)

        value = validate_params(descriptor.schema, params)
        return await descriptor.handler(value, ctx)


def result_to_json(result: Any) -> Any:
    """Make a dispatch result JSON-serializable."""
    if isinstance(result, BatchResult):
        return result.to_dict()
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)
    return result
