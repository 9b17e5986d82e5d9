from __future__ import annotations

import pytest

from engagement.services.classifier import (
    ATTENTION_DRIFT_RULE,
    UNCLASSIFIED,
    Classification,
    classify_event,
)


@pytest.mark.parametrize(
    ("event_type", "expected"),
    [
        ("idle.detected", "attention_drift"),
        ("video.pause", "attention_drift"),
        ("video.buffer.start", "attention_drift"),
        ("lesson.locked_click", "attention_drift"),
        ("quiz.fail", "content_friction"),
        ("quiz.retry", "content_friction"),
        ("tutor.prompt_sent", "content_friction"),
        ("tutor.response_received", "content_friction"),
        ("cold_call.star", "content_friction"),
        ("content.friction.flag", "content_friction"),
        ("video.play", "engaged"),
        ("video.resume", "engaged"),
        ("video.buffer.end", "engaged"),
        ("progress.snapshot", "engaged"),
        ("notes.saved", "engaged"),
        ("lesson.opened", "engaged"),
        ("cold_call.loaded", "engaged"),
        ("tutor.response", "engaged"),
    ],
)
def test_prefix_groups(event_type: str, expected: str) -> None:
    assert classify_event(event_type).derived_status == expected


def test_locked_click_is_drift_not_lesson_engagement() -> None:
    # Both "lesson.locked_click" (drift) and "lesson." (engaged) match.
    result = classify_event("lesson.locked_click")
    assert result.derived_status == "attention_drift"
    assert result.status_reason == "Idle or pause pattern detected (lesson.locked_click)"


def test_every_drift_prefix_wins_over_later_groups() -> None:
    for prefix in ATTENTION_DRIFT_RULE.prefixes:
        assert classify_event(prefix + "x").derived_status == "attention_drift"


def test_matching_is_case_insensitive_but_reason_keeps_original_case() -> None:
    result = classify_event("Video.PAUSE")
    assert result.derived_status == "attention_drift"
    assert result.status_reason == "Idle or pause pattern detected (Video.PAUSE)"


def test_payload_reason_used_verbatim() -> None:
    result = classify_event("quiz.fail", {"reason": "  Missed 3 of 5  "})
    assert result == Classification("content_friction", "  Missed 3 of 5  ")


@pytest.mark.parametrize(
    "payload",
    [None, {}, {"reason": ""}, {"reason": "   "}, {"reason": 42}, {"score": 1}],
)
def test_fallback_reason_when_payload_has_no_usable_reason(payload: dict | None) -> None:
    result = classify_event("quiz.fail", payload)
    assert result.status_reason == "Learner signaled friction (quiz.fail)"


def test_unmatched_event_has_no_status_or_reason() -> None:
    result = classify_event("page.scroll", {"reason": "ignored"})
    assert result is UNCLASSIFIED
    assert result.derived_status is None
    assert result.status_reason is None


def test_classification_is_pure() -> None:
    payload = {"reason": "stuck"}
    assert classify_event("idle.detected", payload) == classify_event(
        "idle.detected", payload
    )
    assert payload == {"reason": "stuck"}
