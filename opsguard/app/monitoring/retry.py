"""Retry with exponential backoff for notification channel sends.

This module provides a configurable retry policy and a helper that retries
an async callable on transient delivery failures.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

import httpx

from opsguard.app.core.logging import get_log_context, get_logger
from opsguard.app.exceptions import ChannelDeliveryError

logger = get_logger(__name__)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 1)
        base_delay: Initial delay between retries in seconds (default: 0.5)
        max_delay: Maximum delay between retries in seconds (default: 10.0)
        exponential_base: Base for exponential calculation (default: 2.0)
        retryable_exceptions: Tuple of exception types that trigger a retry

    Example:
        >>> policy = RetryPolicy(max_retries=3, base_delay=1.0)
        >>> delay = policy.calculate_delay(attempt=2)  # Returns 4.0
    """

    max_retries: int = 1
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    retryable_exceptions: Tuple[Type[Exception], ...] = (
        asyncio.TimeoutError,
        httpx.NetworkError,
        httpx.TimeoutException,
        OSError,
    )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt.

        Uses exponential backoff: delay = min(base_delay * (exponential_base ^ attempt), max_delay)

        Args:
            attempt: The current retry attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)

    def is_retryable(self, exception: BaseException) -> bool:
        """Check if an exception should trigger a retry.

        ChannelDeliveryError carries its own verdict; for HTTPStatusError only
        5xx and 429 responses are retried.
        """
        if isinstance(exception, ChannelDeliveryError):
            return exception.retryable

        if isinstance(exception, httpx.HTTPStatusError):
            status = exception.response.status_code
            return status >= 500 or status == 429

        return isinstance(exception, self.retryable_exceptions)


async def call_with_retry(
    func: Callable[[], Awaitable[Any]],
    policy: Optional[RetryPolicy] = None,
    name: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Tuple[Any, int]:
    """Call func until it succeeds, fails permanently, or retries run out.

    Returns:
        (result, attempts) where attempts counts every call made

    Raises:
        The last exception raised by func
    """
    retry_policy = policy or RetryPolicy()
    attempt = 0

    while True:
        try:
            return await func(), attempt + 1
        except Exception as e:
            if not retry_policy.is_retryable(e):
                logger.debug(
                    f"Non-retryable exception in {name}: {type(e).__name__}: {e}",
                    extra=get_log_context(channel=name),
                )
                raise

            if attempt >= retry_policy.max_retries:
                logger.warning(
                    f"Max retries ({retry_policy.max_retries}) exceeded for {name}: "
                    f"{type(e).__name__}: {e}",
                    extra=get_log_context(channel=name),
                )
                raise

            delay = retry_policy.calculate_delay(attempt)
            logger.warning(
                f"Retry {attempt + 1}/{retry_policy.max_retries} for {name} "
                f"after {type(e).__name__}: {e}. Waiting {delay:.2f}s...",
                extra=get_log_context(channel=name),
            )
            await sleep(delay)
            attempt += 1
