"""Retry policy for n8n API calls using tenacity.

Transient failures (429, 5xx and network errors) are retried with a doubling
backoff; every other failure surfaces immediately.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from n8n_transfer.client.exceptions import TransientTransportError
from n8n_transfer.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0


def is_retryable(exc: BaseException) -> bool:
    """Check whether an exception is a transient failure worth retrying.

    Args:
        exc: Exception raised by an attempt

    Returns:
        True for rate limiting, server errors and transient network errors
    """
    return isinstance(exc, TransientTransportError)


def calculate_backoff(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay before the next attempt, in seconds.

    Args:
        attempt: 0-based index of the attempt that just failed
        base_delay: Delay after the first failure

    Returns:
        ``base_delay * 2**attempt``
    """
    return base_delay * (2**attempt)


class wait_doubling(wait_base):
    """Tenacity wait strategy returning ``calculate_backoff`` for each failure."""

    def __init__(self, base_delay: float = DEFAULT_BASE_DELAY):
        self.base_delay = base_delay

    def __call__(self, retry_state: RetryCallState) -> float:
        return calculate_backoff(retry_state.attempt_number - 1, self.base_delay)


def build_retrying(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    before_sleep: Callable[[RetryCallState], Any] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncRetrying:
    """Build the AsyncRetrying controller used for every API request.

    Args:
        max_attempts: Total number of attempts (including the first one)
        base_delay: Backoff delay after the first failed attempt
        before_sleep: Callback invoked before each backoff sleep
        sleep: Async sleep function, injectable for tests

    Returns:
        Configured AsyncRetrying instance that re-raises the last error
    """
    return AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_doubling(base_delay),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep,
        reraise=True,
    )
