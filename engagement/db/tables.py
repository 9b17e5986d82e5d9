"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in engagement/models/.
Repos convert between SQLAlchemy rows and domain dataclasses.

Users and courses live in other services, so user_id and course_id are
plain identifiers here rather than foreign keys.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    DateTime,
    Identity,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from engagement.db.engine import Base


class ActivityEventRow(Base):
    """Append-only learner activity log.  Rows are never updated or deleted."""

    __tablename__ = "learner_activity_events"

    event_id: Mapped[int] = mapped_column(
        BigInteger, Identity(always=True), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    course_id: Mapped[str] = mapped_column(String(128), nullable=False)
    module_no: Mapped[int | None] = mapped_column(Integer, nullable=True)
    topic_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB(none_as_null=True), nullable=True
    )
    derived_status: Mapped[str | None] = mapped_column(
        String(32), nullable=True
    )  # engaged|attention_drift|content_friction
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        # Serves both the per-learner history query and the windowed
        # per-course aggregation.
        Index(
            "ix_learner_activity_events_course_user_occurred",
            "course_id",
            "user_id",
            "occurred_at",
        ),
        UniqueConstraint(
            "user_id",
            "idempotency_key",
            name="uq_learner_activity_events_user_idempotency_key",
        ),
    )
