"""Health and readiness endpoints.

  /health (liveness): always 200 while the process can answer.  The body
    reports each backing service as ok / degraded / not_configured so a
    dashboard can show a partial outage without the orchestrator
    restarting the container.

  /ready (readiness): 503 when the configured database is unreachable,
    since ingestion cannot succeed without it.  Redis is optional (rate
    limiting falls back to in-memory buckets) and never fails readiness.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status

from engagement.db import engine as db_engine
from engagement.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_status() -> str:
    if db_engine.engine is None:
        return "not_configured"
    try:
        await db_engine.ping_database()
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _redis_status() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await _database_status(),
        "redis": await _redis_status(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if await _database_status() == "degraded":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
