from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest
from prometheus_client import REGISTRY

from engagement.models.activity import TelemetryEvent
from engagement.repos.activity_event_repo import InMemoryActivityEventRepo
from engagement.services.activity_service import (
    ActivityValidationError,
    classify_for_user,
    get_course_learner_statuses,
    get_learner_history,
    record_activity_events,
)
from tests.conftest import COURSE_ID, at


def _ev(event_type: str, occurred_at: datetime | None = None, **kw) -> TelemetryEvent:
    return TelemetryEvent(
        course_id=kw.pop("course_id", COURSE_ID),
        event_type=event_type,
        occurred_at=occurred_at,
        **kw,
    )


# ---- classify_for_user ----


def test_classify_binds_user_and_defaults_timestamp() -> None:
    received = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)
    row = classify_for_user(
        "learner-9", _ev("quiz.fail", payload={"reason": "Stuck"}), received_at=received
    )
    assert row.user_id == "learner-9"
    assert row.occurred_at == received
    assert row.derived_status == "content_friction"
    assert row.status_reason == "Stuck"


def test_classify_rejects_blank_event_type() -> None:
    with pytest.raises(ActivityValidationError, match="event_type"):
        classify_for_user("learner-1", _ev("   "), received_at=at(0))


def test_classify_treats_naive_timestamp_as_utc() -> None:
    row = classify_for_user(
        "learner-1", _ev("video.play", datetime(2026, 3, 2, 9, 0)), received_at=at(5)
    )
    assert row.occurred_at == at(0)
    assert row.occurred_at.tzinfo is not None


def test_naive_and_defaulted_timestamps_aggregate_together() -> None:
    repo = InMemoryActivityEventRepo()
    asyncio.run(
        record_activity_events(
            repo,
            "learner-1",
            [_ev("video.play", datetime(2026, 3, 2, 9, 0)), _ev("video.pause")],
        )
    )

    result = asyncio.run(get_course_learner_statuses(repo, COURSE_ID))
    assert [learner.user_id for learner in result.learners] == ["learner-1"]

    history = asyncio.run(get_learner_history(repo, "learner-1", COURSE_ID, limit=10))
    assert all(e.occurred_at.tzinfo is not None for e in history)


# ---- record_activity_events ----


def test_record_empty_batch_is_noop() -> None:
    repo = InMemoryActivityEventRepo()
    result = asyncio.run(record_activity_events(repo, "learner-1", []))
    assert result.stored == []
    assert asyncio.run(repo.query_recent_per_learner(COURSE_ID)) == {}


def test_record_stores_unclassified_events_with_null_status() -> None:
    repo = InMemoryActivityEventRepo()
    result = asyncio.run(
        record_activity_events(repo, "learner-1", [_ev("page.scroll", at(1))])
    )
    (stored,) = result.stored
    assert stored.derived_status is None
    assert stored.status_reason is None


def test_record_rejects_whole_batch_on_one_bad_event() -> None:
    repo = InMemoryActivityEventRepo()
    with pytest.raises(ActivityValidationError):
        asyncio.run(
            record_activity_events(
                repo, "learner-1", [_ev("video.play", at(0)), _ev("", at(1))]
            )
        )
    assert asyncio.run(repo.query_history("learner-1", COURSE_ID, 10)) == []


def test_record_skips_duplicate_keys_and_counts_them() -> None:
    repo = InMemoryActivityEventRepo()
    before = REGISTRY.get_sample_value("activity_duplicate_events_total") or 0.0

    first = asyncio.run(
        record_activity_events(
            repo, "learner-1", [_ev("video.play", at(0), idempotency_key="k1")]
        )
    )
    replay = asyncio.run(
        record_activity_events(
            repo,
            "learner-1",
            [
                _ev("video.play", at(0), idempotency_key="k1"),
                _ev("video.pause", at(1), idempotency_key="k2"),
            ],
        )
    )

    assert len(first.stored) == 1
    assert len(replay.stored) == 1
    assert replay.duplicates == 1
    after = REGISTRY.get_sample_value("activity_duplicate_events_total") or 0.0
    assert after - before == 1


def test_same_key_from_different_learners_is_not_a_duplicate() -> None:
    repo = InMemoryActivityEventRepo()
    asyncio.run(
        record_activity_events(
            repo, "learner-1", [_ev("video.play", at(0), idempotency_key="k")]
        )
    )
    result = asyncio.run(
        record_activity_events(
            repo, "learner-2", [_ev("video.play", at(0), idempotency_key="k")]
        )
    )
    assert result.duplicates == 0


# ---- get_course_learner_statuses ----


def test_morning_session_end_to_end() -> None:
    repo = InMemoryActivityEventRepo()
    asyncio.run(
        record_activity_events(
            repo,
            "learner-1",
            [
                _ev("video.play", at(0)),
                _ev("video.pause", at(5)),
                _ev("video.resume", at(7)),
                _ev("idle.detected", at(10)),
                _ev("video.pause", at(15)),
            ],
        )
    )

    result = asyncio.run(get_course_learner_statuses(repo, COURSE_ID))
    (learner,) = result.learners
    assert learner.user_id == "learner-1"
    assert learner.derived_status == "attention_drift"
    assert learner.event_type == "video.pause"
    assert learner.occurred_at == at(15)
    assert result.summary.attention_drift == 1


def test_learner_without_events_in_course_is_absent() -> None:
    repo = InMemoryActivityEventRepo()
    asyncio.run(
        record_activity_events(repo, "learner-1", [_ev("video.play", at(0))])
    )
    asyncio.run(
        record_activity_events(
            repo, "learner-2", [_ev("video.play", at(0), course_id="other-course")]
        )
    )

    result = asyncio.run(get_course_learner_statuses(repo, COURSE_ID))
    assert [s.user_id for s in result.learners] == ["learner-1"]

    empty = asyncio.run(get_course_learner_statuses(repo, "no-such-course"))
    assert empty.learners == []
    assert empty.summary.total == 0


def test_window_limits_which_events_count() -> None:
    repo = InMemoryActivityEventRepo()
    # An old friction event followed by three engaged events.
    asyncio.run(
        record_activity_events(
            repo,
            "learner-1",
            [
                _ev("quiz.fail", at(0)),
                _ev("video.play", at(1)),
                _ev("notes.saved", at(2)),
                _ev("lesson.opened", at(3)),
            ],
        )
    )

    wide = asyncio.run(get_course_learner_statuses(repo, COURSE_ID, window_size=4))
    narrow = asyncio.run(get_course_learner_statuses(repo, COURSE_ID, window_size=3))
    assert wide.learners[0].derived_status == "content_friction"
    assert narrow.learners[0].derived_status == "engaged"
    assert narrow.learners[0].event_type == "lesson.opened"


def test_summary_counts_unknown_learners() -> None:
    repo = InMemoryActivityEventRepo()
    asyncio.run(record_activity_events(repo, "a", [_ev("video.play", at(0))]))
    asyncio.run(record_activity_events(repo, "b", [_ev("quiz.retry", at(1))]))
    asyncio.run(record_activity_events(repo, "c", [_ev("page.scroll", at(2))]))

    result = asyncio.run(get_course_learner_statuses(repo, COURSE_ID))
    s = result.summary
    assert (s.engaged, s.attention_drift, s.content_friction, s.unknown) == (1, 0, 1, 1)
    # Most recent representative first.
    assert [learner.user_id for learner in result.learners] == ["c", "b", "a"]


# ---- get_learner_history ----


def test_history_newest_first_with_cursor() -> None:
    repo = InMemoryActivityEventRepo()
    asyncio.run(
        record_activity_events(
            repo,
            "learner-1",
            [_ev("video.play", at(m)) for m in (0, 5, 10, 15)],
        )
    )

    page = asyncio.run(get_learner_history(repo, "learner-1", COURSE_ID, limit=2))
    assert [e.occurred_at for e in page] == [at(15), at(10)]

    older = asyncio.run(
        get_learner_history(
            repo, "learner-1", COURSE_ID, limit=2, before=page[-1].occurred_at
        )
    )
    assert [e.occurred_at for e in older] == [at(5), at(0)]


def test_history_accepts_naive_cursor() -> None:
    repo = InMemoryActivityEventRepo()
    asyncio.run(
        record_activity_events(
            repo, "learner-1", [_ev("video.play", at(m)) for m in (0, 5, 10)]
        )
    )
    page = asyncio.run(
        get_learner_history(
            repo, "learner-1", COURSE_ID, limit=10, before=datetime(2026, 3, 2, 9, 10)
        )
    )
    assert [e.occurred_at for e in page] == [at(5), at(0)]


def test_history_pages_through_shared_timestamp() -> None:
    repo = InMemoryActivityEventRepo()
    asyncio.run(
        record_activity_events(
            repo, "learner-1", [_ev("video.play", at(3)) for _ in range(5)]
        )
    )

    seen: list[int] = []
    page = asyncio.run(get_learner_history(repo, "learner-1", COURSE_ID, limit=2))
    while page:
        seen.extend(e.event_id for e in page)
        last = page[-1]
        page = asyncio.run(
            get_learner_history(
                repo,
                "learner-1",
                COURSE_ID,
                limit=2,
                before=last.occurred_at,
                before_event_id=last.event_id,
            )
        )
    assert seen == sorted(seen, reverse=True)
    assert len(seen) == 5


def test_history_cursor_event_id_requires_timestamp() -> None:
    repo = InMemoryActivityEventRepo()
    with pytest.raises(ActivityValidationError, match="before_event_id"):
        asyncio.run(
            get_learner_history(repo, "learner-1", COURSE_ID, limit=5, before_event_id=3)
        )


def test_history_rejects_non_positive_limit() -> None:
    repo = InMemoryActivityEventRepo()
    with pytest.raises(ActivityValidationError, match="limit"):
        asyncio.run(get_learner_history(repo, "learner-1", COURSE_ID, limit=0))
