"""Bounded retry loop for state-changing remote calls.

The loop has a single entry point and its attempt counter is initialised once,
outside the loop body, so ``max_retries`` is a hard bound on additional
attempts regardless of how the attempt function fails.

Usage:
    result = await retry_async(
        lambda: gateway.send_payment_sync(bolt11),
        config=FIXED_DELAY_RETRY,
    )
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from lightgate.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of additional attempts (default: 3)
        base_delay: Delay in seconds before the first retry (default: 1.0)
        max_delay: Maximum delay in seconds between retries (default: 60.0)
        backoff_factor: Delay multiplier per attempt; 1.0 gives a fixed delay
        jitter: Whether to add random jitter to delays
        jitter_range: Range for jitter as fraction of delay (default: 0.1 = ±10%)
        retryable_exceptions: Exception types that trigger another attempt
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.1
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be > 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        if not 0 <= self.jitter_range <= 1:
            raise ValueError("jitter_range must be between 0 and 1")

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given retry attempt (0-indexed)."""
        delay = min(self.base_delay * (self.backoff_factor**attempt), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay


async def retry_async(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int], Awaitable[None]] | None = None,
) -> T:
    """Run ``func`` until it succeeds, fails non-retryably, or the bound is hit.

    Args:
        func: Async function to run (takes no arguments)
        config: Retry configuration (uses defaults if None)
        on_retry: Optional callback awaited before each retry

    Returns:
        The return value of func() on success

    Raises:
        The first non-retryable exception, or the last retryable one once
        ``config.max_retries`` additional attempts have been made
    """
    config = config or RetryConfig()
    attempt = 0

    while True:
        try:
            return await func()
        except config.retryable_exceptions as e:
            if attempt >= config.max_retries:
                logger.warning(
                    "retry_exhausted",
                    attempts=attempt + 1,
                    exception=type(e).__name__,
                    error=str(e),
                )
                raise

            delay = config.calculate_delay(attempt)
            attempt += 1

            logger.info(
                "retry_attempt",
                attempt=attempt,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 2),
                exception=type(e).__name__,
                error=str(e),
            )

            if on_retry:
                try:
                    await on_retry(e, attempt)
                except Exception as callback_error:
                    logger.warning("retry_callback_failed", error=str(callback_error))

            await asyncio.sleep(delay)


def fixed_delay(max_retries: int, delay_seconds: float) -> RetryConfig:
    """Build a fixed-delay, jitter-free configuration."""
    return RetryConfig(
        max_retries=max_retries,
        base_delay=delay_seconds,
        max_delay=delay_seconds,
        backoff_factor=1.0,
        jitter=False,
    )


# Node still syncing or not ready for channels: 3 more attempts, 1 second apart
FIXED_DELAY_RETRY = fixed_delay(max_retries=3, delay_seconds=1.0)
