from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from fastapi import Request, Response

from storefront_auth.logging import get_logger
from storefront_auth.storage.models import RateLimitBucket, RateLimitIncrement

logger = get_logger(__name__)

RATE_LIMITED_REASON = "RATE_LIMITED"


class RateLimitStore(Protocol):
    async def get(self, key: str) -> Optional[RateLimitBucket]: ...

    async def increment(
        self, key: str, window_seconds: float, max_requests: int
    ) -> RateLimitIncrement: ...

    async def reset(self, key: str) -> None: ...


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int
    reason: Optional[str] = None

    def apply_headers(self, response: Response) -> None:
        """Apply rate limit headers per IETF draft-polli-ratelimit-headers."""
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.remaining))
        response.headers["X-RateLimit-Reset"] = str(self.reset_seconds)

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset_seconds)
        return headers


def client_key(
    request: Request, route: Optional[str] = None, *, trust_proxy_headers: bool = False
) -> str:
    """Derive the rate limit identity for a request: client IP plus route."""
    ip = None
    if trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For", "")
        ip = forwarded.split(",")[0].strip() or None
        if not ip:
            ip = request.headers.get("X-Real-IP") or None
    if not ip:
        ip = request.client.host if request.client else "unknown"
    return f"{route}:{ip}" if route else ip


class RateLimiter:
    """Fixed-window attempt counter over an injectable store."""

    def __init__(
        self, store: RateLimitStore, *, clock: Callable[[], float] = time.time
    ) -> None:
        self.store = store
        self._clock = clock

    async def check(
        self, key: str, window_seconds: float, max_requests: int
    ) -> RateLimitDecision:
        if max_requests <= 0:
            return RateLimitDecision(True, max_requests, max_requests, 0)
        if window_seconds <= 0:
            logger.warning(
                "rate_limit_invalid_window",
                key=key,
                window_seconds=window_seconds,
                message="Invalid rate limit window; defaulting to 60 seconds",
            )
            window_seconds = 60
        try:
            result = await self.store.increment(key, window_seconds, max_requests)
        except Exception as exc:
            # Fail open on store outages
            logger.error(
                "rate_limit_store_failed",
                key=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return RateLimitDecision(True, max_requests, max_requests, 0)

        reset_seconds = result.bucket.reset_after(self._clock(), window_seconds)
        if not result.allowed:
            logger.warning(
                "rate_limit_exceeded",
                key=key,
                count=result.bucket.count,
                limit=max_requests,
                reset_seconds=reset_seconds,
            )
            return RateLimitDecision(
                False, max_requests, 0, reset_seconds, reason=RATE_LIMITED_REASON
            )
        return RateLimitDecision(
            True, max_requests, max_requests - result.bucket.count, reset_seconds
        )

    async def reset(self, key: str) -> None:
        await self.store.reset(key)
