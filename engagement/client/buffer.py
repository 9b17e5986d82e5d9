"""Client-side telemetry buffer.

One TelemetryBuffer belongs to one logged-in session and lives on that
session's asyncio event loop.  Events are queued and sent in batches:

  - immediately once ``max_buffer_size`` events are queued
  - otherwise ``flush_interval`` seconds after the first queued event
    (at most one timer pending)

Delivery is best effort.  A failed batch is logged and dropped, never
retried, so at most one buffer's worth of events is lost per failure.
The queue is swapped for an empty one before any I/O starts, so events
recorded while a batch is in flight begin a new batch.

Without a session token nothing is buffered: recording is a silent no-op
and clearing the token discards whatever is queued.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from engagement.client.transport import TelemetryTransport
from engagement.models.activity import TelemetryEvent

logger = logging.getLogger(__name__)

MAX_BUFFER_SIZE = 20
FLUSH_INTERVAL_SECONDS = 4.0


class TelemetryBuffer:
    def __init__(
        self,
        transport: TelemetryTransport,
        *,
        max_buffer_size: int = MAX_BUFFER_SIZE,
        flush_interval: float = FLUSH_INTERVAL_SECONDS,
    ) -> None:
        if max_buffer_size < 1:
            raise ValueError("max_buffer_size must be >= 1")
        self._transport = transport
        self._max_buffer_size = max_buffer_size
        self._flush_interval = flush_interval
        self._token: str | None = None
        self._queue: list[TelemetryEvent] = []
        self._timer: asyncio.TimerHandle | None = None
        self._in_flight: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def set_session_token(self, token: str | None) -> None:
        """Switch credentials.  None (logout) abandons queued events."""
        self._token = token or None
        if self._token is None:
            self._queue = []
            self._cancel_timer()

    def record(self, event: TelemetryEvent) -> None:
        """Queue an event.  Never raises into the caller."""
        if self._token is None:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; telemetry event dropped")
            return

        if event.idempotency_key is None:
            event = replace(event, idempotency_key=uuid.uuid4().hex)
        self._queue.append(event)

        if len(self._queue) >= self._max_buffer_size:
            self._cancel_timer()
            self._start_flush()
            return
        self._schedule_flush()

    async def flush(self) -> None:
        """Send everything queued now and wait for that send to finish."""
        self._cancel_timer()
        taken = self._take_batch()
        if taken is not None:
            await self._send(*taken)

    async def close(self) -> None:
        """Flush what is queued and wait for in-flight batches."""
        await self.flush()
        if self._in_flight:
            await asyncio.gather(*self._in_flight)

    async def __aenter__(self) -> TelemetryBuffer:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- internals ---

    def _schedule_flush(self) -> None:
        if self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._flush_interval, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._start_flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _start_flush(self) -> None:
        taken = self._take_batch()
        if taken is None:
            return
        task = asyncio.get_running_loop().create_task(self._send(*taken))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    def _take_batch(self) -> tuple[list[dict[str, Any]], str] | None:
        # Runs synchronously: the swap completes before any await.
        if self._token is None or not self._queue:
            return None
        batch, self._queue = self._queue, []
        sent_at = datetime.now(UTC)
        return [_to_wire(e, sent_at) for e in batch], self._token

    async def _send(self, events: list[dict[str, Any]], token: str) -> None:
        try:
            await self._transport.send(events, token)
        except Exception:
            # Telemetry must never surface to the UI; the batch is dropped.
            logger.warning(
                "Failed to send %d telemetry events", len(events), exc_info=True
            )


def _to_wire(event: TelemetryEvent, sent_at: datetime) -> dict[str, Any]:
    return {
        "course_id": event.course_id,
        "event_type": event.event_type,
        "module_no": event.module_no,
        "topic_id": event.topic_id,
        "payload": event.payload,
        "occurred_at": (event.occurred_at or sent_at).isoformat(),
        "idempotency_key": event.idempotency_key,
    }
