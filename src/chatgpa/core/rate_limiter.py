"""Sliding-window rate limiting.

In-process and best effort: each app instance owns its own store, so a
restart or a second worker starts from zero. Good enough for abuse
mitigation, not for quota enforcement.
"""

from __future__ import annotations

import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitResult:
    """Outcome of a limiter check."""

    allowed: bool
    retry_after: int = 0
    remaining: int = 0


class InMemoryRateLimitStore:
    """Per-key timestamp queues shared by the limiters of one app."""

    def __init__(self) -> None:
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def hits(self, key: str) -> Deque[float]:
        return self._hits[key]

    def keys(self) -> list[str]:
        return list(self._hits)

    def prune(self, cutoff: float) -> int:
        """Drop keys whose newest hit is older than ``cutoff``."""
        with self._lock:
            stale = [k for k, ts in self._hits.items() if not ts or ts[-1] <= cutoff]
            for key in stale:
                del self._hits[key]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


class SlidingWindowLimiter:
    """Allow at most ``max_calls`` per ``window_seconds`` for each key.

    A call is allowed when fewer than ``max_calls`` earlier calls lie in the
    trailing window (age strictly below the window). A rejected call is not
    recorded; its ``retry_after`` is the time until the oldest recorded
    call leaves the window, rounded up to whole seconds (at least 1).
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float,
        store: InMemoryRateLimitStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_calls = max(1, max_calls)
        self.window = max(0.001, window_seconds)
        self.store = store or InMemoryRateLimitStore()
        self._clock = clock

    def check(self, key: str) -> RateLimitResult:
        """Record a call for ``key`` if the window has room."""
        now = self._clock()

        with self.store.lock:
            timestamps = self.store.hits(key)
            while timestamps and now - timestamps[0] >= self.window:
                timestamps.popleft()

            if len(timestamps) >= self.max_calls:
                retry_after = max(1, math.ceil(timestamps[0] + self.window - now))
                logger.debug("rate_limited", key=key, retry_after=retry_after)
                return RateLimitResult(allowed=False, retry_after=retry_after, remaining=0)

            timestamps.append(now)
            return RateLimitResult(allowed=True, remaining=self.max_calls - len(timestamps))
