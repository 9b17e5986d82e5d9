from __future__ import annotations

import itertools
from collections import defaultdict
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from engagement.models.activity import (
    AppendResult,
    ClassifiedEvent,
    NewActivityEvent,
    recency_key,
)


class ActivityStoreError(Exception):
    """The backing store could not complete a read or write."""


@runtime_checkable
class ActivityEventRepo(Protocol):
    """Append-only store of classified learner activity events.

    Recency order for every query: occurred_at descending, event_id
    descending on ties.
    """

    async def append(self, events: Sequence[NewActivityEvent]) -> AppendResult:
        """Insert a batch.  Events whose (user_id, idempotency_key) is
        already stored are skipped and counted as duplicates."""
        ...

    async def query_history(
        self,
        user_id: str,
        course_id: str,
        limit: int,
        before: datetime | None = None,
        before_event_id: int | None = None,
    ) -> list[ClassifiedEvent]:
        """Up to ``limit`` newest events for one learner in one course.

        ``before`` alone keeps events strictly older than it.  With
        ``before_event_id`` as well, the cursor is the full recency key of
        the last event already seen, so events sharing its timestamp are
        not skipped.
        """
        ...

    async def query_recent_per_learner(
        self, course_id: str, window_size: int = 20
    ) -> dict[str, list[ClassifiedEvent]]:
        """Each learner's ``window_size`` newest events in the course."""
        ...


class InMemoryActivityEventRepo:
    """List-backed store for dev and tests.  Single-process only."""

    def __init__(self) -> None:
        self._events: list[ClassifiedEvent] = []
        self._keys: set[tuple[str, str]] = set()
        self._ids = itertools.count(1)

    async def append(self, events: Sequence[NewActivityEvent]) -> AppendResult:
        now = datetime.now(UTC)
        stored: list[ClassifiedEvent] = []
        duplicates = 0
        for new in events:
            if new.idempotency_key is not None:
                key = (new.user_id, new.idempotency_key)
                if key in self._keys:
                    duplicates += 1
                    continue
                self._keys.add(key)
            event = ClassifiedEvent.from_new(
                new, event_id=next(self._ids), created_at=now
            )
            self._events.append(event)
            stored.append(event)
        return AppendResult(stored=stored, duplicates=duplicates)

    async def query_history(
        self,
        user_id: str,
        course_id: str,
        limit: int,
        before: datetime | None = None,
        before_event_id: int | None = None,
    ) -> list[ClassifiedEvent]:
        matching = [
            e
            for e in self._events
            if e.user_id == user_id
            and e.course_id == course_id
            and _older_than(e, before, before_event_id)
        ]
        matching.sort(key=recency_key, reverse=True)
        return matching[:limit]

    async def query_recent_per_learner(
        self, course_id: str, window_size: int = 20
    ) -> dict[str, list[ClassifiedEvent]]:
        grouped: dict[str, list[ClassifiedEvent]] = defaultdict(list)
        for e in self._events:
            if e.course_id == course_id:
                grouped[e.user_id].append(e)

        windows: dict[str, list[ClassifiedEvent]] = {}
        for user_id, user_events in grouped.items():
            user_events.sort(key=recency_key, reverse=True)
            windows[user_id] = user_events[:window_size]
        return windows

    def clear(self) -> None:
        self._events.clear()
        self._keys.clear()
        self._ids = itertools.count(1)


def _older_than(
    event: ClassifiedEvent, before: datetime | None, before_event_id: int | None
) -> bool:
    if before is None:
        return True
    if before_event_id is None:
        return event.occurred_at < before
    return recency_key(event) < (before, before_event_id)
