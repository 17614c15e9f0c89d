"""Chunked execution with progress reporting.

Work whose size is only known at runtime (a recursive scan, a long list of
replacements) is enumerated first, then processed in fixed-size chunks with
short sleeps between items and longer sleeps between chunks, so the event
loop that hosts the work is never blocked for more than one chunk.

Progress for one run:

    started      0%
    in_progress  5% .. 95%   one per chunk, emitted before the chunk runs
    completed    100%        carries the results
    error        (enumeration failed; the error is re-raised)

Per-item failures are recorded on the item and never abort the run.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .progress import ProgressEmitter
from .protocol.messages import ProgressEvent, ProgressStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCAN_CHUNK_SIZE = 10
MUTATION_CHUNK_SIZE = 5
ITEM_DELAY = 0.005
CHUNK_DELAY = 0.05

# Enumeration owns the first 5%, chunk processing spans up to 95%
HEAD_RESERVE = 5
PROCESS_SPAN = 90


def chunk_count(total_items: int, chunk_size: int) -> int:
    return math.ceil(total_items / chunk_size) if total_items else 0


def chunk_progress(chunk_index: int, total_chunks: int) -> int:
    """Progress reported at the start of chunk ``chunk_index`` (0-based)."""
    if total_chunks <= 0:
        return HEAD_RESERVE
    return round(HEAD_RESERVE + chunk_index / total_chunks * PROCESS_SPAN)


@dataclass
class ItemOutcome:
    index: int
    success: bool
    value: Any = None
    error: str | None = None


@dataclass
class ChunkedResult:
    command_id: str
    total_items: int
    chunks: int
    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def processed_items(self) -> int:
        return len(self.outcomes)

    @property
    def values(self) -> list[Any]:
        """Successful, non-empty item results in input order."""
        return [o.value for o in self.outcomes if o.success and o.value is not None]

    @property
    def errors(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if not o.success]


class ChunkedRunner:
    """Runs enumerate-then-process work in chunks, emitting progress.

    Args:
        emit: Async callable receiving each ProgressEvent
        chunk_size: Items per chunk
        item_delay: Seconds to sleep between items inside a chunk
        chunk_delay: Seconds to sleep between chunks
    """

    def __init__(
        self,
        emit: ProgressEmitter,
        *,
        chunk_size: int = SCAN_CHUNK_SIZE,
        item_delay: float = ITEM_DELAY,
        chunk_delay: float = CHUNK_DELAY,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.emit = emit
        self.chunk_size = chunk_size
        self.item_delay = item_delay
        self.chunk_delay = chunk_delay

    async def run(
        self,
        command_id: str,
        command_type: str,
        enumerate_items: Callable[[], Awaitable[Sequence[T]]],
        process_item: Callable[[T], Awaitable[Any]],
        *,
        result_payload: Callable[[ChunkedResult], Any] | None = None,
    ) -> ChunkedResult:
        """Enumerate the work list, then process it chunk by chunk.

        Raises:
            Exception: Whatever ``enumerate_items`` raised, after an ``error``
                progress event has been emitted
        """
        last_progress = 0

        async def report(status: ProgressStatus, progress: int, message: str, **extra: Any) -> None:
            nonlocal last_progress
            last_progress = max(last_progress, progress)
            event = ProgressEvent(
                command_id=command_id,
                command_type=command_type,
                status=status,
                progress=last_progress,
                message=message,
                **extra,
            )
            try:
                await self.emit(event)
            except Exception:
                logger.exception(f"Failed to emit progress for {command_id}")

        await report(ProgressStatus.STARTED, 0, f"Starting {command_type}")

        try:
            items = list(await enumerate_items())
        except Exception as e:
            await report(ProgressStatus.ERROR, last_progress, f"Error in {command_type}: {e}")
            raise

        total = len(items)
        total_chunks = chunk_count(total, self.chunk_size)
        result = ChunkedResult(command_id=command_id, total_items=total, chunks=total_chunks)
        logger.debug(f"{command_type} {command_id}: {total} item(s) in {total_chunks} chunk(s)")

        for chunk_index in range(total_chunks):
            start = chunk_index * self.chunk_size
            chunk = items[start : start + self.chunk_size]

            await report(
                ProgressStatus.IN_PROGRESS,
                chunk_progress(chunk_index, total_chunks),
                f"Processing chunk {chunk_index + 1}/{total_chunks}",
                total_items=total,
                processed_items=result.processed_items,
                current_chunk=chunk_index + 1,
                total_chunks=total_chunks,
                chunk_size=self.chunk_size,
            )

            for offset, item in enumerate(chunk):
                result.outcomes.append(await self._process(start + offset, item, process_item))
                if offset < len(chunk) - 1:
                    await asyncio.sleep(self.item_delay)

            if chunk_index < total_chunks - 1:
                await asyncio.sleep(self.chunk_delay)

        payload = result_payload(result) if result_payload else {"results": result.values}
        await report(
            ProgressStatus.COMPLETED,
            100,
            f"{command_type} complete: {total} item(s), {len(result.errors)} failed",
            total_items=total,
            processed_items=result.processed_items,
            total_chunks=total_chunks,
            chunk_size=self.chunk_size,
            payload=payload,
        )
        return result

    async def _process(
        self,
        index: int,
        item: T,
        process_item: Callable[[T], Awaitable[Any]],
    ) -> ItemOutcome:
        try:
            return ItemOutcome(index=index, success=True, value=await process_item(item))
        except Exception as e:
            logger.warning(f"Item {index} failed: {e}")
            return ItemOutcome(index=index, success=False, error=str(e))
