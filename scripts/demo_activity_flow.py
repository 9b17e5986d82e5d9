"""Demo: a learner session's telemetry flowing into the instructor dashboard.

A TelemetryBuffer sends batches through httpx straight into the ASGI app
(no server needed), then the instructor endpoints are read back.

Run with:
    python scripts/demo_activity_flow.py
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import httpx

from engagement.client.buffer import TelemetryBuffer
from engagement.client.transport import HttpTelemetryTransport
from engagement.main import app
from engagement.models.activity import TelemetryEvent
from engagement.services import token_service

COURSE_ID = "course-101"


def _at(minute: int) -> datetime:
    return datetime(2026, 3, 2, 9, minute, tzinfo=UTC)


async def main() -> None:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://demo"
    ) as http:
        # ── Learner session: buffered telemetry ────────────────────────
        learner_token = token_service.create_access_token(sub="learner-1")
        async with TelemetryBuffer(HttpTelemetryTransport(client=http)) as buffer:
            buffer.set_session_token(learner_token)
            buffer.record(
                TelemetryEvent(COURSE_ID, "video.play", module_no=1, occurred_at=_at(0))
            )
            buffer.record(
                TelemetryEvent(
                    COURSE_ID,
                    "quiz.fail",
                    module_no=1,
                    payload={"reason": "Missed 3 of 5"},
                    occurred_at=_at(5),
                )
            )
            buffer.record(
                TelemetryEvent(COURSE_ID, "video.pause", module_no=1, occurred_at=_at(10))
            )
            buffer.record(
                TelemetryEvent(COURSE_ID, "notes.saved", module_no=1, occurred_at=_at(15))
            )
            print(f"1. recorded 4 events, {buffer.pending} pending before flush")
        print("2. buffer closed, pending events flushed")

        # ── Instructor dashboard ───────────────────────────────────────
        instructor = token_service.create_access_token(
            sub="instructor-1", roles=["instructor"]
        )
        headers = {"Authorization": f"Bearer {instructor}"}

        r = await http.get(f"/v1/activity/courses/{COURSE_ID}/learners", headers=headers)
        body = r.json()
        for learner in body["learners"]:
            print(
                f"3. {learner['user_id']}: {learner['derived_status']}"
                f"  ({learner['status_reason']})"
            )
        print(f"   summary: {body['summary']}")

        r = await http.get(
            "/v1/activity/learners/learner-1/history",
            params={"course_id": COURSE_ID, "limit": 10},
            headers=headers,
        )
        print("4. history, newest first:")
        for event in r.json()["events"]:
            print(f"   {event['occurred_at']}  {event['event_type']:<12} {event['derived_status']}")


if __name__ == "__main__":
    asyncio.run(main())
