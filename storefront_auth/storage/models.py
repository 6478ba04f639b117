from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass
class RateLimitBucket:
    """Attempt counter for one client key inside a fixed window."""

    count: int
    window_start: float  # epoch seconds

    def expired(self, now: float, window_seconds: float) -> bool:
        return now - self.window_start >= window_seconds

    def reset_after(self, now: float, window_seconds: float) -> int:
        """Seconds until the current window closes (never below 1)."""
        remaining = self.window_start + window_seconds - now
        return max(1, math.ceil(remaining))


@dataclass
class RateLimitIncrement:
    """Outcome of an atomic increment against a bucket."""

    allowed: bool
    bucket: RateLimitBucket
