"""Transports used by TelemetryBuffer to deliver a batch."""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

INGEST_PATH = "/v1/activity/events"


@runtime_checkable
class TelemetryTransport(Protocol):
    async def send(self, events: list[dict[str, Any]], token: str) -> None:
        """Deliver one batch.  Raises on any transport or HTTP failure."""
        ...


class HttpTelemetryTransport:
    """POSTs batches to the ingestion endpoint with httpx.

    Pass ``client`` to share a connection pool (or an ASGI test client);
    otherwise one is created for ``base_url`` and owned by this transport.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        client: httpx.AsyncClient | None = None,
        path: str = INGEST_PATH,
        timeout: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._path = path

    async def send(self, events: list[dict[str, Any]], token: str) -> None:
        response = await self._client.post(
            self._path,
            json={"events": events},
            headers={"Authorization": f"Bearer {token}"},
        )
        response.raise_for_status()
        logger.debug("Sent %d telemetry events → %d", len(events), response.status_code)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
