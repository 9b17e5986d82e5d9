"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured a shared async client is
created at import time; when it is not, redis_pool is None and the rate
limiter falls back to its in-memory implementation.

Redis holds only ephemeral, cross-process state here (rate-limit
buckets).  Activity events themselves always go to the event store.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from engagement.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, paired with lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured; rate limiting uses in-memory buckets")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        # Keep serving with degraded rate limiting rather than refusing to start.
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
