"""Fixed-window rate limiter for the webhook endpoint.

In-memory, per-process. One bucket per client key; a bucket whose window
has elapsed is replaced, never incremented. Expired buckets are swept on
every call, so memory stays bounded without a cleanup thread.

Every read-check-write of the bucket map happens under one lock; two
requests for the same key can never both take the "fresh bucket" branch.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from billing_gateway.config import DEFAULT_RATE_LIMIT_MAX, DEFAULT_RATE_LIMIT_WINDOW_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class RateLimitBucket:
    """Request count for one client key in the current window."""

    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    retry_after_seconds: int


class FixedWindowRateLimiter:
    """Counts requests per key in fixed windows of ``window_seconds``.

    Args:
        max_requests: Requests allowed per window (non-positive -> default 120)
        window_seconds: Window length (non-positive -> default 60)
        clock: Returns the current time in seconds; defaults to ``time.time``
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT_MAX,
        window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] | None = None,
    ):
        if max_requests <= 0:
            logger.warning(
                "Invalid rate limit max %r, using %d", max_requests, DEFAULT_RATE_LIMIT_MAX
            )
            max_requests = DEFAULT_RATE_LIMIT_MAX
        if window_seconds <= 0:
            logger.warning(
                "Invalid rate limit window %r, using %ds",
                window_seconds,
                DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
            )
            window_seconds = DEFAULT_RATE_LIMIT_WINDOW_SECONDS

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._buckets: dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.time()

    def _sweep(self, now: float) -> None:
        expired = [key for key, bucket in self._buckets.items() if bucket.reset_at <= now]
        for key in expired:
            del self._buckets[key]

    @staticmethod
    def _retry_after(bucket: RateLimitBucket, now: float) -> int:
        return max(1, math.ceil(bucket.reset_at - now))

    def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and report whether it is over the limit.

        A limited request is not counted, so a flood cannot push the counter
        past ``max_requests``.
        """
        with self._lock:
            now = self._now()
            self._sweep(now)

            bucket = self._buckets.get(key)
            if bucket is None or bucket.reset_at <= now:
                self._buckets[key] = RateLimitBucket(count=1, reset_at=now + self.window_seconds)
                return RateLimitResult(
                    limited=False,
                    retry_after_seconds=math.ceil(self.window_seconds),
                )

            if bucket.count >= self.max_requests:
                return RateLimitResult(
                    limited=True,
                    retry_after_seconds=self._retry_after(bucket, now),
                )

            bucket.count += 1
            return RateLimitResult(
                limited=False,
                retry_after_seconds=self._retry_after(bucket, now),
            )

    def bucket_count(self) -> int:
        """Number of live buckets (after the last sweep)."""
        with self._lock:
            return len(self._buckets)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
