"""In-process sliding-window limiter for AI-backed routes."""
from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable

from loguru import logger

from marginalia.errors import RateLimitExceededError


class SlidingWindowRateLimiter:
    """Allows ``max_requests`` per ``window_seconds`` for each key."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max(int(max_requests), 1)
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = clock()

    def _prune(self, key: str, now: float) -> deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float) -> None:
        """Drop every key whose newest hit has left the window."""
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        expired = [k for k, hits in self._hits.items() if not hits or now - hits[-1] >= self.window_seconds]
        for key in expired:
            del self._hits[key]

    def __len__(self) -> int:
        return len(self._hits)

    def remaining(self, key: str) -> int:
        return max(self.max_requests - len(self._prune(key, self._clock())), 0)

    def hit(self, key: str) -> None:
        now = self._clock()
        self._sweep(now)
        hits = self._prune(key, now)
        if len(hits) >= self.max_requests:
            retry_after = max(math.ceil(self.window_seconds - (now - hits[0])), 1)
            logger.warning(f"Rate limit exceeded for {key} (retry in {retry_after}s)")
            raise RateLimitExceededError(
                "Too many AI requests, please try again later",
                retry_after=retry_after,
            )
        hits.append(now)
        self._hits[key] = hits

    def reset(self) -> None:
        self._hits.clear()
