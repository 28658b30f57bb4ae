"""Retry delays with exponential backoff and jitter.

Used by the fallback executor between retries of the same binding and by
scoring hops that retry a model call in place.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional, Set, Type, TypeVar

import structlog

from answerscope.models.config import RetryConfig
from answerscope.utils.exceptions import RateLimitError

logger = structlog.get_logger()

T = TypeVar("T")


class RetryHandler:
    """Async retry helper

    - Exponential backoff: delay = base * 2^attempt
    - Jitter: +/- jitter_factor of the base delay
    - Cap: max_delay_seconds
    - retry_after from a RateLimitError replaces the computed base
    """

    def __init__(self, config: RetryConfig) -> None:
        self.config = config

    def calculate_delay(
        self, attempt: int, retry_after: Optional[float] = None
    ) -> float:
        """Calculate the delay before retry number ``attempt + 1``.

        Args:
            attempt: Zero-indexed count of retries already made
            retry_after: Upstream hint in seconds, used when positive

        Returns:
            Delay in seconds, never negative and never above the cap
        """
        if retry_after is not None and retry_after > 0:
            base_delay = retry_after
        else:
            base_delay = self.config.base_delay_seconds * (2**attempt)

        jitter = base_delay * self.config.jitter_factor
        delay = base_delay + random.uniform(-jitter, jitter)

        return max(0.0, min(delay, self.config.max_delay_seconds))

    async def execute(
        self,
        func: Callable[[], Awaitable[T]],
        retryable_exceptions: Set[Type[Exception]],
        max_attempts: Optional[int] = None,
        on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    ) -> T:
        """Run ``func`` until it succeeds or attempts run out.

        Args:
            func: Zero-argument coroutine function
            retryable_exceptions: Exception types that trigger another attempt
            max_attempts: Overrides config.max_attempts when given
            on_retry: Called with (attempt_number, exception, delay) before
                each sleep

        Returns:
            The first successful result

        Raises:
            Exception: The last exception once attempts are exhausted, or any
                non-retryable exception immediately
        """
        attempts = max_attempts
        if attempts is None:
            attempts = self.config.max_attempts

        for attempt in range(attempts):
            try:
                return await func()
            except Exception as e:
                if not any(isinstance(e, exc) for exc in retryable_exceptions):
                    raise
                if attempt + 1 >= attempts:
                    raise

                retry_after = e.retry_after if isinstance(e, RateLimitError) else None
                delay = self.calculate_delay(attempt, retry_after)

                logger.warning(
                    "retry_attempt",
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    delay_seconds=round(delay, 3),
                )

                if on_retry is not None:
                    on_retry(attempt + 1, e, delay)

                await asyncio.sleep(delay)

        raise RuntimeError("max_attempts must be at least 1")  # pragma: no cover
