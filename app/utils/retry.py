"""
Retry utility functions with exponential backoff.
Categorizes errors as transient (retryable), authorization failures, or permanent.
"""

from collections.abc import Awaitable, Callable
from functools import wraps
from typing import TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings

logger = structlog.get_logger()

T = TypeVar("T")


class TransientError(Exception):
    """Raised for transient errors (network issues, timeouts, 5xx, unexpected response shape)."""

    pass


class AuthError(Exception):
    """Raised when the external service rejects the access token (expired or revoked)."""

    pass


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if an exception represents a transient error that could be retried.

    Args:
        exception: The exception to check

    Returns:
        True if error is transient (retryable), False otherwise
    """
    # Authorization failures are recovered by refreshing the token, never by retrying
    if isinstance(exception, AuthError):
        return False

    # TransientError explicitly marked as retryable
    if isinstance(exception, TransientError):
        return True

    # Network/connection errors are transient
    if isinstance(exception, httpx.ConnectError | httpx.TimeoutException | httpx.NetworkError):
        return True

    # Timeout errors are transient
    if isinstance(exception, TimeoutError):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        status_code = exception.response.status_code
        # HTTP 5xx errors and rate limiting (429) are transient
        return 500 <= status_code < 600 or status_code == 429

    # Default to non-retryable for unknown errors
    return False


def retry_with_backoff(
    max_attempts: int | None = None,
    initial_delay: float | None = None,
    multiplier: float | None = None,
    max_delay: float = 30.0,
):
    """
    Decorator for retrying coroutine functions with exponential backoff.
    Only retries on transient errors; AuthError and everything else propagate unchanged.

    Args:
        max_attempts: Maximum number of attempts (default: settings.max_retry_attempts)
        initial_delay: Initial delay in seconds (default: settings.retry_initial_delay_seconds)
        multiplier: Multiplier for exponential backoff (default: settings.retry_backoff_multiplier)
        max_delay: Maximum delay in seconds

    Returns:
        Decorated coroutine function with retry logic
    """

    def retry_decorator(
        func: Callable[..., Awaitable[T]],
    ) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            retrying = AsyncRetrying(
                stop=stop_after_attempt(max_attempts or settings.max_retry_attempts),
                wait=wait_exponential(
                    multiplier=multiplier or settings.retry_backoff_multiplier,
                    min=initial_delay
                    if initial_delay is not None
                    else settings.retry_initial_delay_seconds,
                    max=max_delay,
                ),
                retry=retry_if_exception_type(TransientError),
                reraise=True,
                before_sleep=_log_retry_attempt,
            )
            async for attempt in retrying:
                with attempt:
                    try:
                        return await func(*args, **kwargs)
                    except (TransientError, AuthError):
                        raise
                    except Exception as e:
                        if is_transient_error(e):
                            # Wrap as TransientError to trigger retry
                            raise TransientError(f"Transient error: {str(e)}") from e
                        raise
            raise AssertionError("unreachable")  # AsyncRetrying reraises on the last attempt

        return wrapper

    return retry_decorator


def _log_retry_attempt(retry_state: RetryCallState):
    """Log retry attempt before sleeping."""
    if retry_state.outcome is not None:
        exception = retry_state.outcome.exception()
        logger.warning(
            "Retrying after transient error",
            attempt=retry_state.attempt_number,
            exception=str(exception),
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
        )
