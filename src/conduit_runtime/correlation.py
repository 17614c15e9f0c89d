"""Correlation of executor replies to in-flight requests.

Each outbound request gets a fresh id and a pending entry. The reader loop
resolves or rejects the entry when the matching reply arrives; the waiting
caller gives up when the deadline passes. Whichever happens first removes the
entry, so a reply is consumed at most once and a late reply is dropped.

Timeouts are advisory: the executor is never told to stop.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Any

from .errors import TransportTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


def new_request_id() -> str:
    """Generate a request id from two independent random tokens."""
    return f"{uuid.uuid4().hex[:16]}{secrets.token_hex(8)}"


@dataclass
class CorrelationEntry:
    """One in-flight request."""

    id: str
    command: str
    future: asyncio.Future[Any]
    timeout: float
    deadline: float
    created_at: float

    def remaining(self, now: float) -> float:
        return self.deadline - now


class CorrelationTable:
    """Pending requests keyed by id.

    Only touched from the event loop thread, so no locking is needed.
    """

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT) -> None:
        self.default_timeout = default_timeout
        self._entries: dict[str, CorrelationEntry] = {}

    def open(
        self,
        command: str,
        timeout: float | None = None,
        request_id: str | None = None,
    ) -> CorrelationEntry:
        """Create a pending entry for a request about to be sent.

        Raises:
            ValueError: If an entry with ``request_id`` is already live
        """
        request_id = request_id or new_request_id()
        if request_id in self._entries:
            raise ValueError(f"Request id already in flight: {request_id}")

        loop = asyncio.get_running_loop()
        now = loop.time()
        timeout = self.default_timeout if timeout is None else timeout
        entry = CorrelationEntry(
            id=request_id,
            command=command,
            future=loop.create_future(),
            timeout=timeout,
            deadline=now + timeout,
            created_at=now,
        )
        self._entries[request_id] = entry
        return entry

    def resolve(self, request_id: str, value: Any) -> bool:
        """Complete a pending request with its result.

        Returns:
            False if no live entry exists (duplicate or stale reply)
        """
        entry = self._entries.pop(request_id, None)
        if entry is None or entry.future.done():
            logger.warning(f"Dropping reply for unknown or expired request: {request_id}")
            return False
        entry.future.set_result(value)
        return True

    def reject(self, request_id: str, error: BaseException) -> bool:
        """Fail a pending request.

        Returns:
            False if no live entry exists (duplicate or stale reply)
        """
        entry = self._entries.pop(request_id, None)
        if entry is None or entry.future.done():
            logger.warning(f"Dropping error for unknown or expired request: {request_id}")
            return False
        entry.future.set_exception(error)
        return True

    def touch(self, request_id: str) -> bool:
        """Push a pending request's deadline out by its original timeout.

        Called when the executor reports progress for the request.
        """
        entry = self._entries.get(request_id)
        if entry is None:
            return False
        now = asyncio.get_running_loop().time()
        entry.deadline = max(entry.deadline, now + entry.timeout)
        return True

    async def wait(self, entry: CorrelationEntry) -> Any:
        """Wait for the entry's reply.

        Raises:
            TransportTimeoutError: If the deadline passes first
        """
        loop = asyncio.get_running_loop()
        try:
            while True:
                remaining = entry.remaining(loop.time())
                if remaining <= 0:
                    break
                try:
                    return await asyncio.wait_for(asyncio.shield(entry.future), remaining)
                except TimeoutError:
                    # The deadline may have moved while we waited
                    continue
        finally:
            if self._entries.get(entry.id) is entry:
                del self._entries[entry.id]
            if not entry.future.done():
                entry.future.cancel()

        # A reply that landed right at the deadline still wins
        if entry.future.done() and not entry.future.cancelled():
            return entry.future.result()

        elapsed = loop.time() - entry.created_at
        logger.warning(
            f"Request {entry.id} ({entry.command}) timed out after {elapsed:.1f}s "
            f"(timeout {entry.timeout:g}s)"
        )
        raise TransportTimeoutError(entry.id, entry.command, entry.timeout)

    def reject_all(self, error: BaseException) -> int:
        """Fail every pending request, e.g. when the connection closes."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            if not entry.future.done():
                entry.future.set_exception(error)
        if entries:
            logger.info(f"Rejected {len(entries)} pending request(s): {error}")
        return len(entries)

    def pending_ids(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
