"""Learner activity endpoints.

  POST /v1/activity/events
      Batch ingestion from the client TelemetryBuffer.  Every event is
      bound to the authenticated caller, classified and appended.  The
      batch succeeds or fails as a whole: 202 / 401 / 422 / 503.

  GET /v1/activity/learners/{user_id}/history
      Raw classified history for one learner in one course, newest first,
      paginated with a ``before`` + ``before_event_id`` cursor taken from
      the last event seen.  Learners may read their own; instructors and
      admins may read anyone's.

  GET /v1/activity/courses/{course_id}/learners
      One aggregated status per learner with events in the course, plus
      the engaged / attention_drift / content_friction / unknown counts.
      Instructors and admins only.  Dashboards poll this about every 30 s.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from engagement.api.dependencies import (
    INSTRUCTOR_ROLES,
    get_activity_repo,
    require_any_role,
    require_user,
)
from engagement.api.ratelimit import require_rate_limit
from engagement.core.config import SETTINGS
from engagement.core.metrics import INGEST_BATCHES
from engagement.models.activity import (
    AggregatedStatus,
    ClassifiedEvent,
    TelemetryEvent,
    as_utc,
)
from engagement.models.principal import Principal
from engagement.repos.activity_event_repo import ActivityEventRepo, ActivityStoreError
from engagement.services import activity_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/activity", tags=["activity"])

_DEFAULT_HISTORY_LIMIT = 40
_MAX_HISTORY_LIMIT = 100


# --- Pydantic schemas ---


class TelemetryEventIn(BaseModel):
    course_id: str = Field(min_length=1, max_length=128)
    event_type: str = Field(min_length=1, max_length=128)
    module_no: int | None = None
    topic_id: str | None = Field(default=None, max_length=128)
    payload: dict[str, Any] | None = None
    occurred_at: datetime | None = None
    idempotency_key: str | None = Field(default=None, max_length=255)

    @field_validator("event_type")
    @classmethod
    def _event_type_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("event_type must be non-empty")
        return v

    @field_validator("occurred_at")
    @classmethod
    def _occurred_at_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    def to_domain(self) -> TelemetryEvent:
        return TelemetryEvent(
            course_id=self.course_id,
            event_type=self.event_type,
            module_no=self.module_no,
            topic_id=self.topic_id,
            payload=self.payload,
            occurred_at=self.occurred_at,
            idempotency_key=self.idempotency_key,
        )


class ActivityBatchIn(BaseModel):
    events: list[TelemetryEventIn] = Field(max_length=SETTINGS.ingest_max_batch)


class ActivityBatchOut(BaseModel):
    accepted: int
    duplicates: int


class ClassifiedEventOut(BaseModel):
    event_id: int
    user_id: str
    course_id: str
    module_no: int | None
    topic_id: str | None
    event_type: str
    payload: dict[str, Any] | None
    derived_status: str | None
    status_reason: str | None
    occurred_at: datetime
    created_at: datetime

    @staticmethod
    def from_domain(e: ClassifiedEvent) -> ClassifiedEventOut:
        return ClassifiedEventOut(
            event_id=e.event_id,
            user_id=e.user_id,
            course_id=e.course_id,
            module_no=e.module_no,
            topic_id=e.topic_id,
            event_type=e.event_type,
            payload=e.payload,
            derived_status=e.derived_status,
            status_reason=e.status_reason,
            occurred_at=e.occurred_at,
            created_at=e.created_at,
        )


class LearnerHistoryOut(BaseModel):
    events: list[ClassifiedEventOut]


class LearnerStatusOut(BaseModel):
    user_id: str
    course_id: str
    event_id: int
    event_type: str
    derived_status: str | None
    status_reason: str | None
    module_no: int | None
    topic_id: str | None
    occurred_at: datetime
    created_at: datetime

    @staticmethod
    def from_domain(s: AggregatedStatus) -> LearnerStatusOut:
        return LearnerStatusOut(
            user_id=s.user_id,
            course_id=s.course_id,
            event_id=s.event_id,
            event_type=s.event_type,
            derived_status=s.derived_status,
            status_reason=s.status_reason,
            module_no=s.module_no,
            topic_id=s.topic_id,
            occurred_at=s.occurred_at,
            created_at=s.created_at,
        )


class StatusSummaryOut(BaseModel):
    engaged: int
    attention_drift: int
    content_friction: int
    unknown: int


class CourseLearnersOut(BaseModel):
    learners: list[LearnerStatusOut]
    summary: StatusSummaryOut


# ---------------------------------------------------------------------------
# POST /v1/activity/events
# ---------------------------------------------------------------------------


@router.post(
    "/events",
    response_model=ActivityBatchOut,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_rate_limit())],
)
async def ingest_activity_events(
    batch: ActivityBatchIn,
    principal: Annotated[Principal, Depends(require_user)],
    repo: Annotated[ActivityEventRepo, Depends(get_activity_repo)],
) -> ActivityBatchOut:
    if not batch.events:
        INGEST_BATCHES.labels(result="empty").inc()
        return ActivityBatchOut(accepted=0, duplicates=0)

    try:
        result = await activity_service.record_activity_events(
            repo, principal.user_id, [e.to_domain() for e in batch.events]
        )
    except ActivityStoreError:
        INGEST_BATCHES.labels(result="error").inc()
        logger.exception(
            "Activity batch write failed user=%s",
            principal.user_id,
            extra={"user_id": principal.user_id, "batch_size": len(batch.events)},
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="activity store unavailable",
        ) from None

    INGEST_BATCHES.labels(result="ok").inc()
    logger.info(
        "Ingested activity batch user=%s accepted=%d duplicates=%d",
        principal.user_id,
        len(result.stored),
        result.duplicates,
        extra={"user_id": principal.user_id, "batch_size": len(batch.events)},
    )
    return ActivityBatchOut(accepted=len(result.stored), duplicates=result.duplicates)


# ---------------------------------------------------------------------------
# GET /v1/activity/learners/{user_id}/history
# ---------------------------------------------------------------------------


@router.get("/learners/{user_id}/history", response_model=LearnerHistoryOut)
async def get_learner_history(
    user_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    repo: Annotated[ActivityEventRepo, Depends(get_activity_repo)],
    course_id: Annotated[str, Query(min_length=1)],
    limit: Annotated[
        int, Query(ge=1, le=_MAX_HISTORY_LIMIT)
    ] = _DEFAULT_HISTORY_LIMIT,
    before: datetime | None = None,
    before_event_id: Annotated[int | None, Query(ge=1)] = None,
) -> LearnerHistoryOut:
    if before_event_id is not None and before is None:
        raise HTTPException(
            status_code=422,
            detail="before_event_id requires before",
        )
    if user_id != principal.user_id and not principal.has_any_role(INSTRUCTOR_ROLES):
        logger.warning(
            "Access denied: user=%s tried to read history of user=%s",
            principal.user_id,
            user_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )

    try:
        events = await activity_service.get_learner_history(
            repo, user_id, course_id, limit, as_utc(before), before_event_id
        )
    except ActivityStoreError:
        logger.exception("Learner history read failed user=%s", user_id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="activity store unavailable",
        ) from None

    return LearnerHistoryOut(events=[ClassifiedEventOut.from_domain(e) for e in events])


# ---------------------------------------------------------------------------
# GET /v1/activity/courses/{course_id}/learners
# ---------------------------------------------------------------------------


@router.get("/courses/{course_id}/learners", response_model=CourseLearnersOut)
async def get_course_learner_statuses(
    course_id: str,
    _principal: Annotated[Principal, Depends(require_any_role(INSTRUCTOR_ROLES))],
    repo: Annotated[ActivityEventRepo, Depends(get_activity_repo)],
    # Cohort filtering happens upstream; accepted so dashboard URLs resolve.
    cohort_id: str | None = None,
) -> CourseLearnersOut:
    try:
        result = await activity_service.get_course_learner_statuses(
            repo, course_id, SETTINGS.activity_window_size
        )
    except ActivityStoreError:
        logger.exception(
            "Course status read failed course=%s",
            course_id,
            extra={"course_id": course_id},
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="activity store unavailable",
        ) from None

    summary = result.summary
    return CourseLearnersOut(
        learners=[LearnerStatusOut.from_domain(s) for s in result.learners],
        summary=StatusSummaryOut(
            engaged=summary.engaged,
            attention_drift=summary.attention_drift,
            content_friction=summary.content_friction,
            unknown=summary.unknown,
        ),
    )
