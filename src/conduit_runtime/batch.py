"""Single-or-batch execution.

Batch commands accept either ``{singular: unit}`` or ``{plural: [unit, ...]}``.
Both are normalized to a list and every unit is validated and executed on
its own: a bad unit is marked failed and the rest still run. The outcome is
always a BatchResult, one UnitResult per input unit in input order, so one
unit and many units look the same to the caller.

Aggregation follows the command's BatchPolicy:

- ANY_SUCCESS: the call succeeds if at least one unit succeeded
- ALL_SUCCESS: the call succeeds only if every unit succeeded

A failed aggregate raises BatchError carrying every unit's status so the
caller can retry just the failed subset. ``options.skipErrors = false``
stops at the first failed unit and marks the rest as skipped.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .chunking import CHUNK_DELAY, ITEM_DELAY, ChunkedRunner
from .errors import BatchError, ConduitError, ValidationError
from .registry import BatchPolicy, BatchSpec, CommandContext, CommandDescriptor
from .validation import ParamsModel, validate_params

logger = logging.getLogger(__name__)


class BatchOptions(ParamsModel):
    skip_errors: bool = True


class UnitResult(BaseModel):
    """Outcome of one unit."""

    index: int
    key: str | None = None
    success: bool
    result: Any = None
    error: str | None = None


class BatchResult(BaseModel):
    """Aggregate outcome of a single-or-batch call."""

    model_config = ConfigDict(populate_by_name=True)

    command: str
    success: bool
    results: list[UnitResult] = Field(default_factory=list)
    command_id: str | None = Field(default=None, serialization_alias="commandId")

    @property
    def succeeded(self) -> list[UnitResult]:
        return [unit for unit in self.results if unit.success]

    @property
    def failed(self) -> list[UnitResult]:
        return [unit for unit in self.results if not unit.success]

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        data["results"] = [unit.model_dump(mode="json", exclude_none=True) for unit in self.results]
        return data


@dataclass
class NormalizedBatch:
    units: list[Any]
    locations: list[str]
    options: BatchOptions

    def items(self) -> list[tuple[int, Any, str]]:
        """(index, raw unit, error location) for every unit."""
        pairs = zip(self.units, self.locations, strict=True)
        return [(i, unit, loc) for i, (unit, loc) in enumerate(pairs)]


def normalize_units(spec: BatchSpec, params: Any) -> NormalizedBatch:
    """Turn ``{singular: x}`` or ``{plural: [...]}`` into a list of units.

    Raises:
        ValidationError: Neither or both keys present, unknown keys, or a
            plural value that is not a non-empty, bounded list
    """
    if not isinstance(params, dict):
        raise ValidationError("Params must be an object", field="params")

    allowed = {spec.singular, spec.plural, "options"}
    for key in params:
        if key not in allowed:
            raise ValidationError(
                f"Unexpected field; expected '{spec.singular}' or '{spec.plural}'", field=key
            )

    has_single = spec.singular in params
    has_plural = spec.plural in params
    if has_single and has_plural:
        raise ValidationError(
            f"Provide either '{spec.singular}' or '{spec.plural}', not both", field=spec.plural
        )
    if not has_single and not has_plural:
        raise ValidationError(
            f"Provide either '{spec.singular}' or '{spec.plural}'", field=spec.singular
        )

    options = validate_params(BatchOptions, params.get("options") or {}, prefix="options")

    if has_single:
        return NormalizedBatch([params[spec.singular]], [spec.singular], options)

    units = params[spec.plural]
    if not isinstance(units, list):
        raise ValidationError("Must be an array", field=spec.plural)
    if not units:
        raise ValidationError("Must contain at least one item", field=spec.plural)
    if len(units) > spec.max_units:
        raise ValidationError(
            f"At most {spec.max_units} items per call, got {len(units)}", field=spec.plural
        )
    locations = [f"{spec.plural}[{i}]" for i in range(len(units))]
    return NormalizedBatch(list(units), locations, options)


def _unit_key(spec: BatchSpec, unit: Any) -> str | None:
    if isinstance(unit, str):
        return unit
    if spec.key_field and isinstance(unit, dict):
        value = unit.get(spec.key_field)
        return str(value) if value is not None else None
    return None


class BatchDispatcher:
    """Runs batch commands unit by unit and aggregates the outcomes.

    Args:
        item_delay: Sleep between units of a chunked batch
        chunk_delay: Sleep between chunks of a chunked batch
    """

    def __init__(self, *, item_delay: float = ITEM_DELAY, chunk_delay: float = CHUNK_DELAY) -> None:
        self.item_delay = item_delay
        self.chunk_delay = chunk_delay

    async def run(
        self,
        descriptor: CommandDescriptor,
        params: Any,
        ctx: CommandContext,
    ) -> BatchResult:
        """Normalize, run and aggregate one call.

        Raises:
            ValidationError: The batch envelope itself is malformed
            BatchError: The aggregate failed under the command's policy, or a
                fail-fast batch stopped early
        """
        spec = descriptor.batch
        if spec is None:
            raise ValueError(f"Command '{descriptor.name}' is not a batch command")

        batch = normalize_units(spec, params)
        fail_fast = not batch.options.skip_errors
        command_id = None

        if spec.chunk_size is not None:
            command_id = f"cmd_{uuid.uuid4().hex[:12]}"
            results = await self._run_chunked(descriptor, batch, ctx, command_id, fail_fast)
        elif spec.concurrent and not fail_fast:
            results = list(
                await asyncio.gather(
                    *(
                        self._run_unit(descriptor, i, unit, loc, ctx)
                        for i, unit, loc in batch.items()
                    )
                )
            )
        else:
            results = await self._run_sequential(descriptor, batch, ctx, fail_fast)

        return self._aggregate(descriptor, results, fail_fast, command_id)

    async def _run_sequential(
        self,
        descriptor: CommandDescriptor,
        batch: NormalizedBatch,
        ctx: CommandContext,
        fail_fast: bool,
    ) -> list[UnitResult]:
        results: list[UnitResult] = []
        failed_at: int | None = None
        for index, unit, loc in batch.items():
            if failed_at is not None:
                results.append(self._skipped(descriptor, index, unit, failed_at))
                continue
            outcome = await self._run_unit(descriptor, index, unit, loc, ctx)
            results.append(outcome)
            if fail_fast and not outcome.success:
                failed_at = index
        return results

    async def _run_chunked(
        self,
        descriptor: CommandDescriptor,
        batch: NormalizedBatch,
        ctx: CommandContext,
        command_id: str,
        fail_fast: bool,
    ) -> list[UnitResult]:
        assert descriptor.batch is not None
        failed_at: int | None = None

        async def enumerate_units() -> list[tuple[int, Any, str]]:
            return batch.items()

        async def process(item: tuple[int, Any, str]) -> UnitResult:
            nonlocal failed_at
            index, unit, loc = item
            if failed_at is not None:
                return self._skipped(descriptor, index, unit, failed_at)
            outcome = await self._run_unit(descriptor, index, unit, loc, ctx)
            if fail_fast and not outcome.success:
                failed_at = index
            return outcome

        runner = ChunkedRunner(
            ctx.progress.publish,
            chunk_size=descriptor.batch.chunk_size or 1,
            item_delay=self.item_delay,
            chunk_delay=self.chunk_delay,
        )
        chunked = await runner.run(
            command_id,
            descriptor.name,
            enumerate_units,
            process,
            result_payload=lambda r: {
                "succeeded": sum(1 for o in r.values if o.success),
                "failed": sum(1 for o in r.values if not o.success),
            },
        )
        return list(chunked.values)

    async def _run_unit(
        self,
        descriptor: CommandDescriptor,
        index: int,
        unit: Any,
        location: str,
        ctx: CommandContext,
    ) -> UnitResult:
        assert descriptor.batch is not None
        key = _unit_key(descriptor.batch, unit)
        try:
            value = validate_params(descriptor.schema, unit, prefix=location)
        except ValidationError as e:
            return UnitResult(index=index, key=key, success=False, error=e.message)

        try:
            result = await descriptor.handler(value, ctx)
        except ConduitError as e:
            logger.info(f"{descriptor.name} unit {index} failed: {e.message}")
            return UnitResult(index=index, key=key, success=False, error=e.message)
        except Exception as e:
            logger.exception(f"{descriptor.name} unit {index} raised")
            return UnitResult(index=index, key=key, success=False, error=str(e) or repr(e))

        return UnitResult(index=index, key=key, success=True, result=result)

    def _skipped(
        self, descriptor: CommandDescriptor, index: int, unit: Any, failed_at: int
    ) -> UnitResult:
        assert descriptor.batch is not None
        return UnitResult(
            index=index,
            key=_unit_key(descriptor.batch, unit),
            success=False,
            error=f"Skipped: unit {failed_at} failed and skipErrors is false",
        )

    def _aggregate(
        self,
        descriptor: CommandDescriptor,
        results: list[UnitResult],
        fail_fast: bool,
        command_id: str | None,
    ) -> BatchResult:
        assert descriptor.batch is not None
        if descriptor.batch.policy == BatchPolicy.ALL_SUCCESS:
            success = all(unit.success for unit in results)
        else:
            success = any(unit.success for unit in results)
        failures = [unit for unit in results if not unit.success]

        result = BatchResult(
            command=descriptor.name,
            success=success and not (fail_fast and failures),
            results=results,
            command_id=command_id,
        )

        if fail_fast and failures:
            first = failures[0]
            raise BatchError(
                f"{descriptor.name} stopped at unit {first.index}: {first.error}", result
            )
        if not success:
            if len(failures) == len(results):
                message = f"All {descriptor.name} operations failed"
            else:
                message = (
                    f"{len(failures)} of {len(results)} {descriptor.name} operations failed"
                )
            raise BatchError(message, result)
        return result
