"""Fixed-window rate limiter for outbound API calls."""

import asyncio
import logging
import time
from typing import Callable, Optional

from n8n_harness.core.exceptions import ConfigurationError, OperationTimeoutError
from n8n_harness.core.metrics import RATE_LIMIT_WAITS

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allows at most ``max_requests`` permits per ``interval`` seconds.

    Permits are consumed, never returned. Waiters are not queued in order;
    whoever re-checks first after the window rolls over gets the permit.
    """

    def __init__(
        self,
        max_requests: int,
        interval: float,
        max_wait: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the rate limiter.

        Args:
            max_requests: Permits available per window
            interval: Window length in seconds
            max_wait: Fail instead of sleeping longer than this (optional)
            clock: Monotonic time source, injectable for tests
        """
        if max_requests <= 0:
            raise ConfigurationError(
                f"max_requests must be positive, got {max_requests}",
                context={"field": "max_requests"},
            )
        if interval <= 0:
            raise ConfigurationError(
                f"interval must be positive, got {interval}",
                context={"field": "interval"},
            )
        self.max_requests = max_requests
        self.interval = interval
        self.max_wait = max_wait
        self._clock = clock
        self._count = 0
        self._window_start = clock()
        self._lock = asyncio.Lock()

    def _roll_window(self, now: float) -> None:
        if now - self._window_start >= self.interval:
            self._count = 0
            self._window_start = now

    @property
    def available(self) -> int:
        """Permits left in the current window."""
        now = self._clock()
        if now - self._window_start >= self.interval:
            return self.max_requests
        return self.max_requests - self._count

    async def acquire(self) -> None:
        """Wait until a permit is available and consume it."""
        while True:
            async with self._lock:
                now = self._clock()
                self._roll_window(now)
                if self._count < self.max_requests:
                    self._count += 1
                    return
                wait_time = max(0.0, self._window_start + self.interval - now)

            if self.max_wait is not None and wait_time > self.max_wait:
                raise OperationTimeoutError(
                    "rate limit acquire",
                    self.max_wait,
                    context={"wait_time": round(wait_time, 3)},
                )

            RATE_LIMIT_WAITS.inc()
            logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s for next window")
            await asyncio.sleep(wait_time)
