"""Ingestion and read-side operations over the activity event store.

record_activity_events: classify a batch and append it for one learner.
get_course_learner_statuses: one aggregated status per learner + counts.
get_learner_history: paginated raw history, newest first.

All functions take the repo as an argument so the HTTP layer can hand in
either the in-memory store or a request-scoped Postgres repo.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from engagement.core.metrics import DUPLICATE_EVENTS, EVENTS_INGESTED
from engagement.models.activity import (
    UNKNOWN,
    AppendResult,
    ClassifiedEvent,
    CourseLearnerStatuses,
    NewActivityEvent,
    TelemetryEvent,
    as_utc,
    recency_key,
)
from engagement.repos.activity_event_repo import ActivityEventRepo
from engagement.services.aggregator import derive_status, summarize
from engagement.services.classifier import classify_event

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 20


class ActivityValidationError(ValueError):
    pass


def classify_for_user(
    user_id: str, event: TelemetryEvent, *, received_at: datetime
) -> NewActivityEvent:
    if not event.event_type.strip():
        raise ActivityValidationError("event_type must be non-empty")

    classification = classify_event(event.event_type, event.payload)
    return NewActivityEvent(
        user_id=user_id,
        course_id=event.course_id,
        event_type=event.event_type,
        occurred_at=as_utc(event.occurred_at) or received_at,
        module_no=event.module_no,
        topic_id=event.topic_id,
        payload=event.payload,
        derived_status=classification.derived_status,
        status_reason=classification.status_reason,
        idempotency_key=event.idempotency_key,
    )


async def record_activity_events(
    repo: ActivityEventRepo, user_id: str, events: Sequence[TelemetryEvent]
) -> AppendResult:
    """Classify and store a batch on behalf of ``user_id``.

    The whole batch is validated before anything is written.  Storage
    errors propagate unchanged; there is no partial-success reporting.
    """
    if not events:
        return AppendResult()

    received_at = datetime.now(UTC)
    rows = [classify_for_user(user_id, e, received_at=received_at) for e in events]
    result = await repo.append(rows)

    for stored in result.stored:
        EVENTS_INGESTED.labels(derived_status=stored.derived_status or UNKNOWN).inc()
    if result.duplicates:
        DUPLICATE_EVENTS.inc(result.duplicates)
        logger.info(
            "Skipped %d duplicate events for user=%s", result.duplicates, user_id
        )

    logger.debug("Stored %d activity events for user=%s", len(result.stored), user_id)
    return result


async def get_course_learner_statuses(
    repo: ActivityEventRepo, course_id: str, window_size: int = DEFAULT_WINDOW_SIZE
) -> CourseLearnerStatuses:
    windows = await repo.query_recent_per_learner(course_id, window_size)

    learners = []
    for events in windows.values():
        status = derive_status(events)
        if status is not None:
            learners.append(status)

    # Most recent representative first, for a stable dashboard order.
    learners.sort(key=lambda s: (s.occurred_at, s.event_id), reverse=True)
    return CourseLearnerStatuses(
        course_id=course_id,
        learners=learners,
        summary=summarize(learners),
    )


async def get_learner_history(
    repo: ActivityEventRepo,
    user_id: str,
    course_id: str,
    limit: int,
    before: datetime | None = None,
    before_event_id: int | None = None,
) -> list[ClassifiedEvent]:
    """Newest-first history page.

    Pass the last seen event's ``occurred_at`` and ``event_id`` as the
    cursor for the next page; ``before`` alone cuts on the timestamp only.
    """
    if limit < 1:
        raise ActivityValidationError("limit must be >= 1")
    if before_event_id is not None and before is None:
        raise ActivityValidationError("before_event_id requires before")
    events = await repo.query_history(
        user_id, course_id, limit, as_utc(before), before_event_id
    )
    # Repos already order newest first; re-sorting keeps the contract
    # independent of the backend.
    return sorted(events, key=recency_key, reverse=True)
