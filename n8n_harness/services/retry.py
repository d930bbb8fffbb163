"""Bounded exponential-backoff retry for async operations."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from n8n_harness.core.exceptions import ConfigurationError
from n8n_harness.core.metrics import API_RETRIES

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[BaseException, int], Any]
RetryPredicate = Callable[[BaseException], bool]


def default_is_retryable(error: BaseException) -> bool:
    """Every failure is retried except configuration errors."""
    return not isinstance(error, ConfigurationError)


class RetryPolicy:
    """
    Retries a failing async operation with exponential backoff.

    The delay before retry ``n`` (1-based) is ``initial_delay * 2 ** (n - 1)``,
    optionally capped at ``max_delay``. No jitter is applied. Once
    ``max_retries`` retries have failed, the last error is re-raised unchanged.

    Retrying is blind to side effects: a POST that reached the server before
    the failure surfaced will be sent again. Pass ``is_retryable`` to narrow
    retries for non-idempotent calls.

    Cancelling the awaiting task interrupts both the backoff sleep and any
    further attempts.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: Optional[float] = None,
        on_retry: Optional[RetryCallback] = None,
        is_retryable: Optional[RetryPredicate] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_retries < 0:
            raise ConfigurationError(
                f"max_retries must not be negative, got {max_retries}",
                context={"field": "max_retries"},
            )
        if initial_delay < 0:
            raise ConfigurationError(
                f"initial_delay must not be negative, got {initial_delay}",
                context={"field": "initial_delay"},
            )
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.on_retry = on_retry
        self.is_retryable = is_retryable or default_is_retryable
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given failed attempt (1-based)."""
        delay = self.initial_delay * (2 ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Execute ``operation`` until it succeeds or retries run out."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                if attempt > self.max_retries or not self.is_retryable(e):
                    raise

                delay = self.delay_for(attempt)
                if self.on_retry is not None:
                    self.on_retry(e, attempt)
                API_RETRIES.inc()
                logger.warning(
                    f"Attempt {attempt}/{self.max_retries + 1} failed: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                await self._sleep(delay)


async def with_retry(operation: Callable[[], Awaitable[T]], **policy_kwargs: Any) -> T:
    """Run ``operation`` under a one-off RetryPolicy."""
    return await RetryPolicy(**policy_kwargs).run(operation)
