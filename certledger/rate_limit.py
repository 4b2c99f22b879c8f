"""
Rate limiting for the certledger HTTP service.

Sliding window limiter keyed per client and endpoint.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Sliding window rate limiter.

    Args:
        rpm: Maximum requests per window
        window_seconds: Window size in seconds
        clock: Time source, seconds as float
    """

    def __init__(self, rpm: int, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitResult:
        """Record a hit for key unless the window is already full."""
        now = self._clock()
        window_start = now - self._window

        with self._lock:
            q = self._hits[key]
            while q and q[0] <= window_start:
                q.popleft()

            if len(q) >= self._limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after=max(0.0, q[0] + self._window - now),
                )

            q.append(now)
            return RateLimitResult(allowed=True, remaining=self._limit - len(q))

    def reset(self, key: Optional[str] = None) -> None:
        """Reset counters for key, or for every key."""
        with self._lock:
            if key:
                self._hits.pop(key, None)
            else:
                self._hits.clear()
