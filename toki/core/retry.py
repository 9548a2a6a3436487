"""Retry policy for outgoing HTTP calls (embedding endpoint, PM clients)."""

import logging
from typing import Any, Callable, TypeVar

from httpx import ConnectError, HTTPStatusError, NetworkError, TimeoutException
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Transient errors that may be retried
RETRYABLE_EXCEPTIONS = (
    TimeoutException,
    ConnectError,
    NetworkError,
    HTTPStatusError,
)


def is_retryable_http_error(exception: BaseException) -> bool:
    """Check if an HTTP error is transient (network, 5xx, 408, 429)."""
    if isinstance(exception, HTTPStatusError):
        status_code = exception.response.status_code
        if 500 <= status_code < 600:
            return True
        return status_code in (408, 429)
    return isinstance(exception, RETRYABLE_EXCEPTIONS)


def _log_before_sleep(max_attempts: int) -> Callable[[RetryCallState], None]:
    def _log(retry_state: RetryCallState) -> None:
        fn_name = getattr(retry_state.fn, "__name__", "call")
        error: Any = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Retrying {fn_name} after {error} "
            f"(attempt {retry_state.attempt_number}/{max_attempts})"
        )

    return _log


def retry_with_backoff(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator to retry a call with exponential backoff on transient HTTP errors.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds

    Returns:
        Decorated function with retry logic
    """
    return retry(
        retry=retry_if_exception(is_retryable_http_error),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        reraise=True,
        before_sleep=_log_before_sleep(max_attempts),
    )
