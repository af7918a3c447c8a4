"""
Per-caller request limits for the registration endpoint.

Callers are keyed by client id (or remote address before authentication).
Each key keeps the timestamps of its accepted requests inside the current
window; the result carries what the endpoint reports back in its
``Retry-After`` and ``X-RateLimit-*`` headers.
"""

import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    # Seconds until the oldest counted request leaves the window
    retry_after: float = 0.0

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(max(1, math.ceil(self.retry_after)))
        return headers


class RateLimiter:
    """Sliding window limiter: at most ``rpm`` accepted requests per window."""

    def __init__(self, rpm: int, window_seconds: int = 60, clock: Callable[[], float] = time.monotonic):
        self.limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock
        self._accepted: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitResult:
        """Count the request against ``key`` if the window has room for it."""
        now = self._clock()
        with self._lock:
            accepted = self._accepted[key]
            while accepted and accepted[0] <= now - self._window:
                accepted.popleft()

            if len(accepted) >= self.limit:
                return RateLimitResult(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    retry_after=accepted[0] + self._window - now,
                )

            accepted.append(now)
            return RateLimitResult(allowed=True, limit=self.limit, remaining=self.limit - len(accepted))
