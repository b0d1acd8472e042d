"""Sliding-window rate limiting for the n8n API client."""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable

from n8n_transfer.utils.logging import get_logger

logger = get_logger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` request starts in any ``window`` seconds.

    Timestamps of recent request starts are kept in a deque and pruned on every
    check. A caller that finds the window full sleeps until the oldest entry
    leaves it. Requests are delayed, never rejected.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the limiter.

        Args:
            max_requests: Maximum request starts per window (0 disables limiting)
            window: Window length in seconds
            clock: Monotonic clock, injectable for tests
            sleep: Async sleep, injectable for tests
        """
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    async def acquire(self) -> bool:
        """Wait for a free slot and record the request start.

        Returns:
            True if the caller had to wait for a slot
        """
        if self.max_requests <= 0:
            return False

        waited = False
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    return waited

                wait_time = self.window - (now - self._timestamps[0])
                if not waited:
                    logger.debug(
                        "rate_limit_wait",
                        wait_seconds=round(wait_time, 3),
                        max_requests=self.max_requests,
                    )
                waited = True
                await self._sleep(max(wait_time, 0.0))

    @property
    def in_window(self) -> int:
        """Number of request starts currently inside the window."""
        self._prune(self._clock())
        return len(self._timestamps)
