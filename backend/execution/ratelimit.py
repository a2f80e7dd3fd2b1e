"""
Sliding-window rate limiting keyed by caller identity
"""

import math
import time
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retryAfter: int = 0  # seconds until the oldest hit leaves the window


class SlidingWindowRateLimiter:
    """
    Allows at most `max_requests` hits per key within any `window_seconds`
    span. Safe to share between threads. Keys with no hits left in the
    window are dropped at most once per window, so memory stays bounded by
    the callers seen recently.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_requests < 1:
            raise ValueError('max_requests must be at least 1')
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._last_prune = clock()

    def hit(self, key: str) -> RateLimitDecision:
        """Record a request for `key` if the window has room"""
        now = self._clock()
        window_start = now - self.window_seconds

        with self._lock:
            if self._closed:
                raise RuntimeError('rate limiter is closed')

            if now - self._last_prune >= self.window_seconds:
                self._prune_locked(window_start)
                self._last_prune = now

            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= self.max_requests:
                retry_after = math.ceil(hits[0] + self.window_seconds - now)
                logger.info(f"Rate limit hit for {key}, retry after {retry_after}s")
                return RateLimitDecision(allowed=False, retryAfter=max(1, retry_after))

            hits.append(now)
            return RateLimitDecision(allowed=True)

    def _prune_locked(self, window_start: float) -> None:
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= window_start]:
            del self._hits[key]

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def close(self) -> None:
        with self._lock:
            self._hits.clear()
            self._closed = True
