from __future__ import annotations

import hashlib
import time
from typing import Callable, Optional

import redis.asyncio as aioredis

from storefront_auth.storage.models import RateLimitBucket, RateLimitIncrement


class RedisRateLimitStore:
    """Redis-backed rate limit buckets shared by every app instance."""

    # Atomic fixed-window increment; never counts past the limit
    _FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local max_requests = tonumber(ARGV[3])

local data = redis.call('HMGET', key, 'count', 'start')
local count = tonumber(data[1])
local start = tonumber(data[2])

if count == nil or start == nil or now - start >= window_ms then
  redis.call('HSET', key, 'count', 1, 'start', now)
  redis.call('PEXPIRE', key, window_ms)
  return {1, 1, tostring(now)}
end

if count >= max_requests then
  return {0, count, tostring(start)}
end

count = redis.call('HINCRBY', key, 'count', 1)
return {1, count, tostring(start)}
"""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.redis_url = redis_url
        self._clock = clock
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._fixed_window = self.client.register_script(self._FIXED_WINDOW_SCRIPT)

    @staticmethod
    def _normalize_key(key: str) -> str:
        """Hash client-derived keys so delimiters in them cannot collide."""
        digest = hashlib.sha256(key.encode()).hexdigest()
        return f"rate:{digest}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        from redis import Redis

        # Short-lived sync client so the async pool is not bound to a
        # temporary event loop during startup checks
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[RateLimitBucket]:
        data = await self.client.hgetall(self._normalize_key(key))
        if not data or "count" not in data or "start" not in data:
            return None
        try:
            return RateLimitBucket(
                count=int(data["count"]), window_start=float(data["start"]) / 1000.0
            )
        except (TypeError, ValueError):
            # Corrupted bucket - treat as absent
            return None

    async def increment(
        self, key: str, window_seconds: float, max_requests: int
    ) -> RateLimitIncrement:
        now_ms = int(self._clock() * 1000)
        window_ms = max(1, int(window_seconds * 1000))
        allowed, count, start = await self._fixed_window(
            keys=[self._normalize_key(key)],
            args=[now_ms, window_ms, max_requests],
        )
        bucket = RateLimitBucket(count=int(count), window_start=float(start) / 1000.0)
        return RateLimitIncrement(bool(int(allowed)), bucket)

    async def reset(self, key: str) -> None:
        await self.client.delete(self._normalize_key(key))

    async def close(self) -> None:
        """Close Redis connection."""
        await self.client.aclose()
