"""
Sliding-window rate limiter for embedding provider calls
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque

import structlog

logger = structlog.get_logger()

ONE_MINUTE = 60.0


class SlidingWindowRateLimiter:
    """
    Allow at most max_calls acquisitions per sliding window.

    Callers over the limit suspend until the oldest timestamp leaves the
    window. Waiters are served in arrival order; no call is dropped.
    """

    def __init__(
        self,
        max_calls: int = 3000,
        window_seconds: float = ONE_MINUTE,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")

        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def in_window(self) -> int:
        """Number of calls currently counted in the window"""
        self._evict(self._clock())
        return len(self._timestamps)

    async def acquire(self) -> None:
        """Wait for a free slot, then record the call"""
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._timestamps) < self.max_calls:
                    break

                wait = self.window_seconds - (now - self._timestamps[0])
                logger.debug(
                    "rate_limiter.waiting",
                    wait_seconds=round(wait, 3),
                    limit=self.max_calls,
                )
                await self._sleep(max(wait, 0.0))

            self._timestamps.append(self._clock())

    def _evict(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()
