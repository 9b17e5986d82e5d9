"""PostgreSQL implementation of ActivityEventRepo."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime
from typing import cast

from sqlalchemy import func, select, tuple_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from engagement.db.tables import ActivityEventRow
from engagement.models.activity import (
    AppendResult,
    ClassifiedEvent,
    DerivedStatus,
    NewActivityEvent,
)
from engagement.repos.activity_event_repo import ActivityStoreError

_IDEMPOTENCY_CONSTRAINT = "uq_learner_activity_events_user_idempotency_key"


class PgActivityEventRepo:
    """Satisfies the ActivityEventRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, events: Sequence[NewActivityEvent]) -> AppendResult:
        if not events:
            return AppendResult()

        # One multi-row INSERT per batch.  Rows whose idempotency key is
        # already stored are skipped by the unique constraint and simply
        # missing from RETURNING.
        stmt = (
            pg_insert(ActivityEventRow)
            .values([_new_to_values(e) for e in events])
            .on_conflict_do_nothing(constraint=_IDEMPOTENCY_CONSTRAINT)
            .returning(ActivityEventRow)
        )
        try:
            rows = (await self._session.scalars(stmt)).all()
            # Commit here so a failed commit surfaces as a store error too.
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise ActivityStoreError("failed to append activity events") from exc

        stored = [_row_to_event(row) for row in rows]
        return AppendResult(stored=stored, duplicates=len(events) - len(stored))

    async def query_history(
        self,
        user_id: str,
        course_id: str,
        limit: int,
        before: datetime | None = None,
        before_event_id: int | None = None,
    ) -> list[ClassifiedEvent]:
        stmt = select(ActivityEventRow).where(
            ActivityEventRow.user_id == user_id,
            ActivityEventRow.course_id == course_id,
        )
        if before is not None and before_event_id is not None:
            # Row-value comparison matches the (occurred_at, event_id) ordering.
            stmt = stmt.where(
                tuple_(ActivityEventRow.occurred_at, ActivityEventRow.event_id)
                < tuple_(before, before_event_id)
            )
        elif before is not None:
            stmt = stmt.where(ActivityEventRow.occurred_at < before)
        stmt = stmt.order_by(
            ActivityEventRow.occurred_at.desc(),
            ActivityEventRow.event_id.desc(),
        ).limit(limit)

        try:
            rows = (await self._session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            raise ActivityStoreError("failed to read learner history") from exc
        return [_row_to_event(row) for row in rows]

    async def query_recent_per_learner(
        self, course_id: str, window_size: int = 20
    ) -> dict[str, list[ClassifiedEvent]]:
        # Top-N per learner in one round trip:
        #   row_number() over (partition by user_id order by occurred_at desc)
        rank = (
            func.row_number()
            .over(
                partition_by=ActivityEventRow.user_id,
                order_by=(
                    ActivityEventRow.occurred_at.desc(),
                    ActivityEventRow.event_id.desc(),
                ),
            )
            .label("rn")
        )
        ranked = (
            select(ActivityEventRow, rank)
            .where(ActivityEventRow.course_id == course_id)
            .subquery("ranked")
        )
        windowed = aliased(ActivityEventRow, ranked)
        stmt = (
            select(windowed)
            .where(ranked.c.rn <= window_size)
            .order_by(
                ranked.c.user_id,
                ranked.c.occurred_at.desc(),
                ranked.c.event_id.desc(),
            )
        )

        try:
            rows = (await self._session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            raise ActivityStoreError("failed to read course activity window") from exc

        grouped: dict[str, list[ClassifiedEvent]] = defaultdict(list)
        for row in rows:
            grouped[row.user_id].append(_row_to_event(row))
        return dict(grouped)


def _new_to_values(event: NewActivityEvent) -> dict:
    return {
        "user_id": event.user_id,
        "course_id": event.course_id,
        "module_no": event.module_no,
        "topic_id": event.topic_id,
        "event_type": event.event_type,
        "payload": event.payload,
        "derived_status": event.derived_status,
        "status_reason": event.status_reason,
        "idempotency_key": event.idempotency_key,
        "occurred_at": event.occurred_at,
    }


def _row_to_event(row: ActivityEventRow) -> ClassifiedEvent:
    return ClassifiedEvent(
        event_id=row.event_id,
        user_id=row.user_id,
        course_id=row.course_id,
        event_type=row.event_type,
        occurred_at=row.occurred_at,
        created_at=row.created_at,
        module_no=row.module_no,
        topic_id=row.topic_id,
        payload=row.payload,
        derived_status=cast("DerivedStatus | None", row.derived_status),
        status_reason=row.status_reason,
        idempotency_key=row.idempotency_key,
    )
