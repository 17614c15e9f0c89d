"""Command registry.

The registry is the single source of truth for which commands exist. It is
an explicit value built once at startup and handed to the dispatcher; there
is no module-level global, so every test can build a fresh one.

Example:
    registry = CommandRegistry()

    @registry.command("ping", schema=PingParams, family=CommandFamily.READ)
    async def ping(params: PingParams, ctx: CommandContext) -> dict:
        return {"pong": True}
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import DuplicateCommandError, UnknownCommandError
from .validation import MAX_BATCH_UNITS, dump_params, json_schema

if TYPE_CHECKING:
    from .executor import Executor
    from .progress import ProgressRouter
    from .subscriptions import EventSink, SubscriptionRegistry

logger = logging.getLogger(__name__)


class CommandFamily(str, Enum):
    """Kinds of commands; each family has a fixed batch policy."""

    READ = "read"
    CREATE = "create"
    MUTATE = "mutate"
    STRUCTURE = "structure"
    LOCAL = "local"


class BatchPolicy(str, Enum):
    """How per-unit outcomes aggregate into one success flag."""

    ANY_SUCCESS = "any_success"
    ALL_SUCCESS = "all_success"


FAMILY_POLICY: dict[CommandFamily, BatchPolicy] = {
    CommandFamily.READ: BatchPolicy.ANY_SUCCESS,
    CommandFamily.CREATE: BatchPolicy.ANY_SUCCESS,
    CommandFamily.MUTATE: BatchPolicy.ANY_SUCCESS,
    CommandFamily.STRUCTURE: BatchPolicy.ALL_SUCCESS,
    CommandFamily.LOCAL: BatchPolicy.ALL_SUCCESS,
}


@dataclass
class CommandContext:
    """Everything a handler may touch while running one call."""

    command: str
    executor: Executor
    subscriptions: SubscriptionRegistry
    progress: ProgressRouter
    sink: EventSink | None = None
    timeout: float | None = None

    async def execute(self, command: str, params: Any) -> Any:
        """Forward validated params to the executor."""
        return await self.executor.execute(command, dump_params(params), timeout=self.timeout)


CommandHandler = Callable[[Any, CommandContext], Awaitable[Any]]


@dataclass(frozen=True)
class BatchSpec:
    """Single-or-batch convention for one command.

    ``{singular: unit}`` is wrapped into a one-element list; ``{plural: [...]}``
    is used as is.
    """

    singular: str
    plural: str
    policy: BatchPolicy = BatchPolicy.ANY_SUCCESS
    key_field: str | None = "nodeId"
    concurrent: bool = False
    chunk_size: int | None = None
    max_units: int = MAX_BATCH_UNITS

    def __post_init__(self) -> None:
        if self.singular == self.plural:
            raise ValueError("Batch singular and plural keys must differ")
        if self.chunk_size is not None and self.chunk_size < 1:
            raise ValueError("Batch chunk_size must be positive")


@dataclass(frozen=True)
class CommandDescriptor:
    """A registered command. Immutable once registered.

    For batch commands ``schema`` describes one unit; otherwise it describes
    the whole params object.
    """

    name: str
    schema: Any
    handler: CommandHandler
    family: CommandFamily
    description: str = ""
    batch: BatchSpec | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.replace("_", "").isalnum():
            raise ValueError(f"Invalid command name: {self.name!r}")
        if not callable(self.handler):
            raise ValueError(f"Handler for '{self.name}' must be callable")

    @property
    def is_batch(self) -> bool:
        return self.batch is not None

    def input_schema(self) -> dict[str, Any]:
        """JSON Schema of the accepted params, as declared to tool callers."""
        unit = json_schema(self.schema)
        if self.batch is None:
            return unit

        defs = unit.pop("$defs", None)
        spec = self.batch
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {
                spec.singular: unit,
                spec.plural: {
                    "type": "array",
                    "items": unit,
                    "minItems": 1,
                    "maxItems": spec.max_units,
                },
                "options": {
                    "type": "object",
                    "properties": {"skipErrors": {"type": "boolean", "default": True}},
                    "additionalProperties": False,
                },
            },
            "oneOf": [{"required": [spec.singular]}, {"required": [spec.plural]}],
            "additionalProperties": False,
        }
        if defs:
            schema["$defs"] = defs
        return schema

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "family": self.family.value,
            "inputSchema": self.input_schema(),
        }
        if self.batch is not None:
            data["batch"] = {
                "singular": self.batch.singular,
                "plural": self.batch.plural,
                "policy": self.batch.policy.value,
                "chunked": self.batch.chunk_size is not None,
            }
        return data


class CommandRegistry:
    """Name → descriptor mapping.

    Duplicate names are rejected unless the registry was created with
    ``allow_replace=True``; ``register_or_replace`` is the explicit overwrite.
    """

    def __init__(self, *, allow_replace: bool = False) -> None:
        self._commands: dict[str, CommandDescriptor] = {}
        self.allow_replace = allow_replace

    def register(self, descriptor: CommandDescriptor) -> None:
        """Register a command.

        Raises:
            DuplicateCommandError: If the name exists and replacement is off
        """
        if descriptor.name in self._commands:
            if not self.allow_replace:
                raise DuplicateCommandError(descriptor.name)
            logger.warning(f"Replacing registered command: {descriptor.name}")
        self._commands[descriptor.name] = descriptor
        logger.debug(f"Registered command: {descriptor.name}")

    def register_or_replace(self, descriptor: CommandDescriptor) -> bool:
        """Register a command, overwriting any existing one.

        Returns:
            True if an existing command was replaced
        """
        replaced = descriptor.name in self._commands
        self._commands[descriptor.name] = descriptor
        if replaced:
            logger.info(f"Replaced command: {descriptor.name}")
        return replaced

    def command(
        self,
        name: str,
        *,
        schema: Any,
        family: CommandFamily,
        description: str = "",
        batch: BatchSpec | None = None,
        timeout: float | None = None,
    ) -> Callable[[CommandHandler], CommandHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: CommandHandler) -> CommandHandler:
            self.register(
                CommandDescriptor(
                    name=name,
                    schema=schema,
                    handler=handler,
                    family=family,
                    description=description or (handler.__doc__ or "").strip(),
                    batch=batch,
                    timeout=timeout,
                )
            )
            return handler

        return decorator

    def get(self, name: str) -> CommandDescriptor | None:
        return self._commands.get(name)

    def require(self, name: str) -> CommandDescriptor:
        """Look up a command.

        Raises:
            UnknownCommandError: If nothing is registered under ``name``
        """
        descriptor = self._commands.get(name)
        if descriptor is None:
            raise UnknownCommandError(name)
        return descriptor

    def names(self) -> list[str]:
        return sorted(self._commands)

    def commands(self) -> list[CommandDescriptor]:
        return [self._commands[name] for name in self.names()]

    def describe(self) -> list[dict[str, Any]]:
        """Tool-facing catalogue, one entry per command."""
        return [descriptor.to_dict() for descriptor in self.commands()]

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)
