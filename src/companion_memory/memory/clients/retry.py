"""
Retry for provider calls.

Rate limits, 5xx responses, transport errors and timeouts come back as
ProviderError with ``retryable`` set; those are retried with exponential
backoff a bounded number of times. Anything else surfaces immediately.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ..exceptions import ProviderError

T = TypeVar('T')

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 10.0  # seconds


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retrying after the given zero-based attempt."""
    return min(base_delay * (2 ** attempt), max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    description: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY
) -> T:
    """Await ``operation()``, retrying retryable ProviderErrors.

    Args:
        operation: Factory returning a fresh awaitable per attempt
        description: Name used in log messages
        max_attempts: Total attempts, including the first
        base_delay: Delay after the first failure; doubles per attempt
        max_delay: Upper bound on any single delay

    Raises:
        ProviderError: the last error once attempts are exhausted, or the
            first non-retryable one
    """
    attempts = max(1, max_attempts)
    attempt = 0
    while True:
        try:
            return await operation()
        except ProviderError as e:
            if not e.retryable or attempt >= attempts - 1:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logging.warning(
                f"{description} failed (attempt {attempt + 1}/{attempts}), retrying in {delay:.1f}s: {e}"
            )
            await asyncio.sleep(delay)
            attempt += 1
