"""Sliding-window rate limiting keyed by client IP."""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from ..errors import RateLimitExceeded


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int

    def headers(self) -> Dict[str, str]:
        headers = {"RateLimit-Limit": str(self.limit), "RateLimit-Remaining": str(self.remaining)}
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class SlidingWindowRateLimiter:
    """At most ``max_requests`` per ``window`` seconds per key.

    Rejected requests are not recorded, so a client that backs off regains
    capacity as its oldest accepted requests leave the window.
    """

    def __init__(self, max_requests: int = 100, window: float = 15 * 60,
                 clock: Optional[Callable[[], float]] = None):
        if max_requests < 1 or window <= 0:
            raise ValueError("max_requests and window must be positive")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock or time.monotonic
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> RateLimitStatus:
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and now - hits[0] >= self.window:
                hits.popleft()
            if len(hits) >= self.max_requests:
                retry_after = max(1, math.ceil(self.window - (now - hits[0])))
                return RateLimitStatus(False, self.max_requests, 0, retry_after)
            hits.append(now)
            return RateLimitStatus(True, self.max_requests, self.max_requests - len(hits), 0)

    def check(self, key: str) -> RateLimitStatus:
        """Record a hit or raise RateLimitExceeded."""
        status = self.hit(key)
        if not status.allowed:
            raise RateLimitExceeded(status.retry_after)
        return status

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def prune(self) -> int:
        """Drop keys with no hits inside the window."""
        now = self._clock()
        with self._lock:
            stale = [k for k, hits in self._hits.items() if not hits or now - hits[-1] >= self.window]
            for key in stale:
                del self._hits[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)
