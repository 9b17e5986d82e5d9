"""Rule-based engagement classifier.

Maps an event type to one of three derived statuses by ordered prefix
matching.  Groups are checked in the order of _RULES and the first group
with a matching prefix wins, so an event never carries two statuses.

Group order, not prefix length, decides overlaps: "lesson.locked_click"
is listed under attention drift and must be reached before the broader
"lesson." prefix in the engaged group.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from engagement.models.activity import (
    ATTENTION_DRIFT,
    CONTENT_FRICTION,
    ENGAGED,
    DerivedStatus,
)


@dataclass(frozen=True, slots=True)
class ClassificationRule:
    status: DerivedStatus
    prefixes: tuple[str, ...]
    fallback_reason: str

    def matches(self, normalized_event_type: str) -> bool:
        return normalized_event_type.startswith(self.prefixes)


@dataclass(frozen=True, slots=True)
class Classification:
    derived_status: DerivedStatus | None = None
    status_reason: str | None = None


ATTENTION_DRIFT_RULE = ClassificationRule(
    status=ATTENTION_DRIFT,
    prefixes=("idle.", "video.pause", "video.buffer.start", "lesson.locked_click"),
    fallback_reason="Idle or pause pattern detected",
)

CONTENT_FRICTION_RULE = ClassificationRule(
    status=CONTENT_FRICTION,
    prefixes=(
        "quiz.fail",
        "quiz.retry",
        "tutor.prompt",
        "cold_call.star",
        "cold_call.submit",
        "tutor.response_received",
        "content.friction",
    ),
    fallback_reason="Learner signaled friction",
)

ENGAGED_RULE = ClassificationRule(
    status=ENGAGED,
    prefixes=(
        "video.play",
        "video.resume",
        "video.buffer.end",
        "progress.snapshot",
        "persona.",
        "notes.",
        "lesson.",
        "cold_call.",
        "tutor.response",
    ),
    fallback_reason="Learner interacting with content",
)

# Evaluation order.  Reordering changes real classifications.
_RULES: tuple[ClassificationRule, ...] = (
    ATTENTION_DRIFT_RULE,
    CONTENT_FRICTION_RULE,
    ENGAGED_RULE,
)

UNCLASSIFIED = Classification()


def classify_event(
    event_type: str, payload: Mapping[str, Any] | None = None
) -> Classification:
    normalized = event_type.lower()
    for rule in _RULES:
        if rule.matches(normalized):
            return Classification(
                derived_status=rule.status,
                status_reason=build_reason(event_type, payload, rule.fallback_reason),
            )
    return UNCLASSIFIED


def build_reason(
    event_type: str, payload: Mapping[str, Any] | None, fallback: str
) -> str:
    """Use the client's own reason when it sent one, else describe the rule."""
    if isinstance(payload, Mapping):
        reason = payload.get("reason")
        if isinstance(reason, str) and reason.strip():
            return reason
    return f"{fallback} ({event_type})"
