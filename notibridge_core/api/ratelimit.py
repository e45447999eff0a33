"""Sliding-window rate limiter keyed by client address."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable


class RateLimiter:
    """Simple sliding window rate limiter.

    Keys with no hits inside the window are dropped, at most once per window,
    so memory stays bounded by the number of recently active clients.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: dict[str, deque[float]] = {}
        self._next_sweep = clock() + window_seconds

    def __len__(self) -> int:
        """Number of clients currently tracked."""
        return len(self._requests)

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        if now >= self._next_sweep:
            self._sweep(cutoff)
            self._next_sweep = now + self.window_seconds

        hits = self._requests.setdefault(key, deque())
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if len(hits) >= self.max_requests:
            return False
        hits.append(now)
        return True

    def retry_after(self, key: str) -> float:
        """Seconds until ``key`` may issue another request."""
        hits = self._requests.get(key)
        if not hits or len(hits) < self.max_requests:
            return 0.0
        return max(0.0, hits[0] + self.window_seconds - self._clock())

    def _sweep(self, cutoff: float) -> None:
        # The newest hit is last; a key is idle when even that one has expired.
        idle = [key for key, hits in self._requests.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._requests[key]
