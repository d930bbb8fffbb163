"""Rate limiter tests."""

import asyncio
import time

import pytest

from n8n_harness.core.exceptions import ConfigurationError, OperationTimeoutError
from n8n_harness.services.rate_limiter import RateLimiter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.mark.asyncio
    async def test_permits_within_window_do_not_wait(self, clock):
        """Test N acquisitions in one window complete without suspending."""
        limiter = RateLimiter(max_requests=5, interval=60, clock=clock)

        for _ in range(5):
            await asyncio.wait_for(limiter.acquire(), timeout=0.5)

        assert limiter.available == 0

    @pytest.mark.asyncio
    async def test_exhausted_window_suspends(self, clock):
        """Test the acquisition after N waits for the next window."""
        limiter = RateLimiter(max_requests=3, interval=60, clock=clock)
        for _ in range(3):
            await limiter.acquire()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(limiter.acquire(), timeout=0.05)

    @pytest.mark.asyncio
    async def test_window_rollover_restores_permits(self, clock):
        """Test permits come back once the interval has elapsed."""
        limiter = RateLimiter(max_requests=2, interval=10, clock=clock)
        await limiter.acquire()
        await limiter.acquire()
        assert limiter.available == 0

        clock.advance(10)

        assert limiter.available == 2
        await asyncio.wait_for(limiter.acquire(), timeout=0.5)
        assert limiter.available == 1

    @pytest.mark.asyncio
    async def test_waits_real_time_for_next_window(self):
        """Test a blocked caller resumes after the window elapses."""
        limiter = RateLimiter(max_requests=2, interval=0.2)

        started = time.monotonic()
        for _ in range(3):
            await limiter.acquire()
        elapsed = time.monotonic() - started

        assert elapsed >= 0.15

    @pytest.mark.asyncio
    async def test_concurrent_callers_never_exceed_limit(self, clock):
        """Test concurrent acquisitions only hand out N permits per window."""
        limiter = RateLimiter(max_requests=3, interval=60, clock=clock)

        tasks = [asyncio.create_task(limiter.acquire()) for _ in range(5)]
        done, pending = await asyncio.wait(tasks, timeout=0.1)

        assert len(done) == 3
        assert len(pending) == 2
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_max_wait_raises_instead_of_sleeping(self, clock):
        """Test a wait longer than max_wait fails fast."""
        limiter = RateLimiter(max_requests=1, interval=60, max_wait=1.0, clock=clock)
        await limiter.acquire()

        with pytest.raises(OperationTimeoutError) as exc_info:
            await limiter.acquire()

        assert exc_info.value.operation == "rate limit acquire"
        assert exc_info.value.timeout == 1.0

    @pytest.mark.parametrize(
        "max_requests,interval",
        [(0, 1.0), (-1, 1.0), (1, 0), (1, -5.0)],
    )
    def test_invalid_configuration(self, max_requests, interval):
        """Test non-positive limits are rejected."""
        with pytest.raises(ConfigurationError):
            RateLimiter(max_requests=max_requests, interval=interval)
