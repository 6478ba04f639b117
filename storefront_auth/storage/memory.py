from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional

from storefront_auth.logging import get_logger
from storefront_auth.storage.models import RateLimitBucket, RateLimitIncrement


class MemoryRateLimitStore:
    """In-process rate limit buckets for tests and single-instance dev runs.

    Each key gets its own lock so concurrent attempts from one client are
    serialized without blocking unrelated clients. Opening a new window
    prunes buckets whose window has lapsed so the maps track active clients
    only.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self.logger = get_logger(__name__)
        self._clock = clock
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        # dict.setdefault is atomic under the GIL, so two callers racing on a
        # new key always end up sharing one lock
        return self._locks.setdefault(key, threading.Lock())

    def _prune_expired(self, now: float, window_seconds: float, keep: str) -> None:
        pruned = 0
        for key, bucket in list(self._buckets.items()):
            if key == keep or not bucket.expired(now, window_seconds):
                continue
            lock = self._locks.get(key)
            if lock is not None and not lock.acquire(blocking=False):
                # In use; the next prune will catch it
                continue
            try:
                current = self._buckets.get(key)
                if current is not None and current.expired(now, window_seconds):
                    del self._buckets[key]
                    self._locks.pop(key, None)
                    pruned += 1
            finally:
                if lock is not None:
                    lock.release()
        if pruned:
            self.logger.debug("rate_limit_buckets_pruned", count=pruned)

    async def get(self, key: str) -> Optional[RateLimitBucket]:
        with self._lock_for(key):
            bucket = self._buckets.get(key)
            if bucket is None:
                return None
            return RateLimitBucket(bucket.count, bucket.window_start)

    async def increment(
        self, key: str, window_seconds: float, max_requests: int
    ) -> RateLimitIncrement:
        now = self._clock()
        with self._lock_for(key):
            bucket = self._buckets.get(key)
            opened = bucket is None or bucket.expired(now, window_seconds)
            if opened:
                self._buckets[key] = RateLimitBucket(count=1, window_start=now)
                result = RateLimitIncrement(True, RateLimitBucket(1, now))
            elif bucket.count >= max_requests:
                # Already at the limit: reject without consuming more budget
                return RateLimitIncrement(
                    False, RateLimitBucket(bucket.count, bucket.window_start)
                )
            else:
                bucket.count += 1
                return RateLimitIncrement(
                    True, RateLimitBucket(bucket.count, bucket.window_start)
                )
        self._prune_expired(now, window_seconds, keep=key)
        return result

    async def reset(self, key: str) -> None:
        with self._lock_for(key):
            self._buckets.pop(key, None)
        self._locks.pop(key, None)
