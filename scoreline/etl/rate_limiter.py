"""
Sliding-window rate limiter for provider requests.

Usage:
    limiter = SlidingWindowRateLimiter(max_requests=10, window_seconds=60, name="api_football")
    await limiter.acquire()
    # call the API
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    At most max_requests per window_seconds.

    acquire() waits until the oldest request in the window ages out.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        name: str = "unnamed",
        time_fn: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._time = time_fn
        self._sleep = sleep_fn
        self._requests: deque = deque()
        self._lock = asyncio.Lock()
        self.total_waits = 0

    def _clean(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._time()
                self._clean(now)
                if len(self._requests) < self.max_requests:
                    self._requests.append(now)
                    return
                wait = self._requests[0] + self.window_seconds - now
                self.total_waits += 1
                logger.debug(f"[RATE] {self.name} waiting {wait:.2f}s")
                await self._sleep(max(wait, 0.0))

    @property
    def in_window(self) -> int:
        self._clean(self._time())
        return len(self._requests)
