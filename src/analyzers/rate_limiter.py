"""
Request Rate Limiting Module.

Sliding-window limiter shared by every language-model caller of one process,
so that chunked runs and workflow stages never exceed the upstream request
budget regardless of how they are scheduled.
"""

import asyncio
import time
from collections import deque


class RequestRateLimiter:
    """
    Limits requests to max_requests per rolling period.

    Attributes:
        max_requests (int): Requests allowed per period
        period (float): Window length in seconds
        request_times (deque): Monotonic timestamps of recent requests
    """

    def __init__(self, max_requests: int, period: float):
        """
        Initialize the limiter.

        Args:
            max_requests (int): Requests allowed per period
            period (float): Window length in seconds
        """
        self.max_requests = max_requests
        self.period = period
        self.request_times = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float) -> None:
        # Remove timestamps older than the allowed period
        while self.request_times and (now - self.request_times[0]) > self.period:
            self.request_times.popleft()

    async def acquire(self) -> None:
        """
        Wait until a request slot is free, then record the request.
        """
        async with self._lock:
            now = time.monotonic()
            self._evict(now)

            # If we're at capacity, wait until the oldest request leaves the window
            if len(self.request_times) >= self.max_requests:
                wait_time = self.period - (now - self.request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)
                self._evict(time.monotonic())
                # Still full when the clock landed exactly on the boundary
                if len(self.request_times) >= self.max_requests:
                    self.request_times.popleft()

            self.request_times.append(time.monotonic())
