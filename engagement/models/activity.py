from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

DerivedStatus = Literal["engaged", "attention_drift", "content_friction"]

ENGAGED: DerivedStatus = "engaged"
ATTENTION_DRIFT: DerivedStatus = "attention_drift"
CONTENT_FRICTION: DerivedStatus = "content_friction"

# Label used for events (and learners) with no derived status.
UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    """One raw interaction event as sent by the front end."""

    course_id: str
    event_type: str  # dot-delimited, e.g. "video.pause", "quiz.fail"
    module_no: int | None = None
    topic_id: str | None = None
    payload: dict[str, Any] | None = None
    occurred_at: datetime | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True, slots=True)
class NewActivityEvent:
    """A classified event bound to a learner, not yet written to the store."""

    user_id: str
    course_id: str
    event_type: str
    occurred_at: datetime
    module_no: int | None = None
    topic_id: str | None = None
    payload: dict[str, Any] | None = None
    derived_status: DerivedStatus | None = None
    status_reason: str | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True, slots=True)
class ClassifiedEvent:
    """Append-only activity log row.  Never mutated once written."""

    event_id: int
    user_id: str
    course_id: str
    event_type: str
    occurred_at: datetime
    created_at: datetime
    module_no: int | None = None
    topic_id: str | None = None
    payload: dict[str, Any] | None = None
    derived_status: DerivedStatus | None = None
    status_reason: str | None = None
    idempotency_key: str | None = None

    @staticmethod
    def from_new(
        new: NewActivityEvent, *, event_id: int, created_at: datetime
    ) -> ClassifiedEvent:
        return ClassifiedEvent(
            event_id=event_id,
            user_id=new.user_id,
            course_id=new.course_id,
            event_type=new.event_type,
            occurred_at=new.occurred_at,
            created_at=created_at,
            module_no=new.module_no,
            topic_id=new.topic_id,
            payload=new.payload,
            derived_status=new.derived_status,
            status_reason=new.status_reason,
            idempotency_key=new.idempotency_key,
        )


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC so stored and compared values are aware."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def recency_key(event: ClassifiedEvent) -> tuple[datetime, int]:
    """Sort key for "most recent first" ordering (use with reverse=True).

    Timestamps may collide, so the event id breaks ties.
    """
    return (event.occurred_at, event.event_id)


@dataclass(frozen=True, slots=True)
class AggregatedStatus:
    """A learner's current status, computed on read from their recent window.

    The representative fields come from the single event that decided the
    status.  derived_status is None when the window held only unclassified
    events.
    """

    user_id: str
    course_id: str
    event_id: int
    event_type: str
    occurred_at: datetime
    created_at: datetime
    derived_status: DerivedStatus | None = None
    status_reason: str | None = None
    module_no: int | None = None
    topic_id: str | None = None

    @property
    def status_label(self) -> str:
        return self.derived_status or UNKNOWN


@dataclass(frozen=True, slots=True)
class StatusSummary:
    engaged: int = 0
    attention_drift: int = 0
    content_friction: int = 0
    unknown: int = 0

    @property
    def total(self) -> int:
        return self.engaged + self.attention_drift + self.content_friction + self.unknown


@dataclass(frozen=True, slots=True)
class CourseLearnerStatuses:
    course_id: str
    learners: list[AggregatedStatus] = field(default_factory=list)
    summary: StatusSummary = field(default_factory=StatusSummary)


@dataclass(frozen=True, slots=True)
class AppendResult:
    """Outcome of a batch append: rows written plus idempotent skips."""

    stored: list[ClassifiedEvent] = field(default_factory=list)
    duplicates: int = 0
