"""Collapse a learner's recent events into one representative status.

Statuses are ranked by a fixed severity order, highest first:

    content_friction > attention_drift > engaged

The winner is the most recent event of the highest-ranked status present
in the window.  Recency only matters inside a band: a friction event nine
events back still outranks an engaged event from a second ago.  Counts are
never blended.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from engagement.models.activity import (
    ATTENTION_DRIFT,
    CONTENT_FRICTION,
    ENGAGED,
    UNKNOWN,
    AggregatedStatus,
    ClassifiedEvent,
    DerivedStatus,
    StatusSummary,
    recency_key,
)

STATUS_PRIORITY: tuple[DerivedStatus, ...] = (
    CONTENT_FRICTION,
    ATTENTION_DRIFT,
    ENGAGED,
)


def derive_status(events: Sequence[ClassifiedEvent]) -> AggregatedStatus | None:
    """Pick the representative event for one learner's window.

    Returns None for an empty window.  When no event in the window is
    classified, the most recent one is returned with an unknown status.
    """
    if not events:
        return None

    newest_first = sorted(events, key=recency_key, reverse=True)

    latest_by_status: dict[DerivedStatus, ClassifiedEvent] = {}
    for event in newest_first:
        if event.derived_status is not None:
            latest_by_status.setdefault(event.derived_status, event)

    for status in STATUS_PRIORITY:
        winner = latest_by_status.get(status)
        if winner is not None:
            return _to_aggregated(winner, status)

    return _to_aggregated(newest_first[0], None)


def summarize(statuses: Iterable[AggregatedStatus]) -> StatusSummary:
    counts = {ENGAGED: 0, ATTENTION_DRIFT: 0, CONTENT_FRICTION: 0, UNKNOWN: 0}
    for status in statuses:
        counts[status.status_label] += 1
    return StatusSummary(
        engaged=counts[ENGAGED],
        attention_drift=counts[ATTENTION_DRIFT],
        content_friction=counts[CONTENT_FRICTION],
        unknown=counts[UNKNOWN],
    )


def _to_aggregated(
    event: ClassifiedEvent, status: DerivedStatus | None
) -> AggregatedStatus:
    return AggregatedStatus(
        user_id=event.user_id,
        course_id=event.course_id,
        event_id=event.event_id,
        event_type=event.event_type,
        occurred_at=event.occurred_at,
        created_at=event.created_at,
        derived_status=status,
        status_reason=event.status_reason,
        module_no=event.module_no,
        topic_id=event.topic_id,
    )
