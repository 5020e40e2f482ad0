"""Correlation registry pairing outbound calls with their eventual responses."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable

from .errors import OrphanResponseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingRequest:
    """An outstanding call waiting for exactly one response."""

    id: str
    context_name: str
    future: asyncio.Future[Any]

    def resolve(self, result: Any) -> None:
        if not self.future.done():
            self.future.set_result(result)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class CorrelationRegistry:
    """Maps outstanding request ids to pending continuations.

    Ids come from a monotonically increasing counter, so an id is never
    reused while an earlier call with the same id could still be pending.
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingRequest] = {}
        self._sequence = itertools.count()
        self.orphans: list[OrphanResponseError] = []

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def next_id(self) -> str:
        return str(next(self._sequence))

    def register(self, context_name: str, request_id: str | None = None) -> PendingRequest:
        """Create and store a pending entry; the caller awaits ``entry.future``."""
        resolved_id = request_id if request_id is not None else self.next_id()
        if resolved_id in self._pending:
            raise ValueError(f"Correlation id {resolved_id!r} is already pending.")
        loop = asyncio.get_running_loop()
        entry = PendingRequest(id=resolved_id, context_name=context_name, future=loop.create_future())
        self._pending[resolved_id] = entry
        return entry

    def settle(self, request_id: str, result: Any = None, error: BaseException | None = None) -> bool:
        """Remove the entry for ``request_id`` and fulfil it.

        Returns False (and records an orphan) when no call is pending under
        that id; an unknown id never creates a new entry.
        """
        entry = self._pending.pop(request_id, None)
        if entry is None:
            orphan = OrphanResponseError(request_id)
            self.orphans.append(orphan)
            logger.warning("Dropping orphan response: %s", orphan)
            return False
        if error is not None:
            entry.reject(error)
        else:
            entry.resolve(result)
        return True

    def discard(self, request_id: str) -> None:
        """Forget a pending entry whose caller gave up waiting."""
        self._pending.pop(request_id, None)

    def reject_context(self, context_name: str, error_factory: Callable[[], BaseException]) -> int:
        """Reject every call pending on ``context_name``; returns how many were rejected."""
        doomed = [entry for entry in self._pending.values() if entry.context_name == context_name]
        for entry in doomed:
            del self._pending[entry.id]
            entry.reject(error_factory())
        if doomed:
            logger.info("Rejected %d pending call(s) to closed context %r", len(doomed), context_name)
        return len(doomed)

    def pending_ids(self, context_name: str | None = None) -> list[str]:
        return [
            entry.id
            for entry in self._pending.values()
            if context_name is None or entry.context_name == context_name
        ]
