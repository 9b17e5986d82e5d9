"""Token-bucket rate limiting for the ingestion endpoint.

Each client key owns a bucket of ``capacity`` tokens refilled at
``refill_rate`` tokens per second; a request spends one token.  Bursts up
to the capacity are allowed, which suits telemetry: a buffer flush after a
busy stretch of video scrubbing arrives as a cluster of requests, while the
long-run rate stays bounded.

Two backends share the RateLimiter protocol: an in-memory dict for dev and
tests, and Redis when several API processes must share buckets.  Both run
the same refill arithmetic; Redis runs it inside a Lua script so two
processes cannot spend the same token.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """capacity: burst size.  refill_rate: sustained tokens per second."""

    capacity: int = 60
    refill_rate: float = 1.0


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    retry_after: float  # seconds until the next token, 0 when allowed


@runtime_checkable
class RateLimiter(Protocol):
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult: ...


def _spend(
    tokens: float, elapsed: float, config: RateLimitConfig
) -> tuple[float, RateLimitResult]:
    """Refill for ``elapsed`` seconds, then try to take one token."""
    tokens = min(float(config.capacity), tokens + elapsed * config.refill_rate)
    if tokens < 1:
        wait = (1 - tokens) / config.refill_rate
        return tokens, RateLimitResult(False, 0, config.capacity, wait)
    tokens -= 1
    return tokens, RateLimitResult(True, int(tokens), config.capacity, 0.0)


class InMemoryRateLimiter:
    """Per-process buckets.  Not shared between API instances."""

    def __init__(self) -> None:
        # key -> (tokens, monotonic time of last update)
        self._buckets: dict[str, tuple[float, float]] = {}

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = time.monotonic()
        tokens, updated_at = self._buckets.get(key, (float(config.capacity), now))
        tokens, result = _spend(tokens, now - updated_at, config)
        self._buckets[key] = (tokens, now)
        return result


_BUCKET_SCRIPT = """
local capacity = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local state = redis.call('HMGET', KEYS[1], 'tokens', 'updated_at')
local tokens = tonumber(state[1]) or capacity
local updated_at = tonumber(state[2]) or now

tokens = math.min(capacity, tokens + (now - updated_at) * rate)
local allowed = 0
local wait_ms = 0
if tokens >= 1 then
    tokens = tokens - 1
    allowed = 1
else
    wait_ms = math.ceil((1 - tokens) / rate * 1000)
end

redis.call('HSET', KEYS[1], 'tokens', tokens, 'updated_at', now)
redis.call('EXPIRE', KEYS[1], math.ceil(capacity / rate) + 60)
return {allowed, math.floor(tokens), wait_ms}
"""


class RedisRateLimiter:
    """Buckets stored as Redis hashes under ``ratelimit:<key>``."""

    _PREFIX = "ratelimit:"

    def __init__(self, redis_client) -> None:
        self._script = redis_client.register_script(_BUCKET_SCRIPT)

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        allowed, remaining, wait_ms = await self._script(
            keys=[self._PREFIX + key],
            args=[config.capacity, config.refill_rate, time.time()],
        )
        return RateLimitResult(
            allowed=bool(allowed),
            remaining=int(remaining) if allowed else 0,
            limit=config.capacity,
            retry_after=wait_ms / 1000,
        )
