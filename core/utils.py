import asyncio
import functools
import logging
import random

from typing import Awaitable, Callable, Optional, TypeVar

from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses treated as transient by the Docs API.
RETRYABLE_STATUSES = (429, 500, 502, 503)

# Message fragments that mark a rate-limit failure when no status is attached.
RATE_LIMIT_MARKERS = ("rateLimitExceeded", "429")

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0


class RetryExhaustedError(Exception):
    """Raised when a transient failure persists after every retry attempt."""

    def __init__(self, retries: int, last_error: BaseException):
        self.retries = retries
        self.last_error = last_error
        super().__init__(f"after {retries} retries: {last_error}")


def _error_status(error: BaseException) -> Optional[int]:
    """Return the HTTP status attached to an API error, if any."""
    if isinstance(error, HttpError):
        resp = getattr(error, "resp", None)
        status = getattr(resp, "status", None)
        try:
            return int(status) if status is not None else None
        except (TypeError, ValueError):
            return None
    return None


def is_retryable_error(error: Optional[BaseException]) -> bool:
    """
    Decide whether a failed Docs API call is safe to retry.

    Rate limiting (429) and transient server failures (500, 502, 503) are
    retryable. Errors that carry no usable status are matched on their
    message text instead.

    Args:
        error: The exception raised by the API call (None is never retryable)

    Returns:
        True if the call should be retried with backoff
    """
    if error is None:
        return False

    status = _error_status(error)
    if status in RETRYABLE_STATUSES:
        return True

    message = str(error)
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def compute_backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> float:
    """
    Compute the sleep before the next attempt.

    The delay doubles per attempt and is capped at max_delay, then jittered
    into the upper half of that window: delay/2 + uniform[0, delay/2).

    Args:
        attempt: Zero-based attempt number that just failed
        base_delay: Delay in seconds for the first retry
        max_delay: Upper bound for the un-jittered delay

    Returns:
        Seconds to wait before retrying
    """
    delay = min(base_delay * (2**attempt), max_delay)
    half = delay / 2
    jitter = random.uniform(0, half) if half > 0 else 0.0
    return half + jitter


async def retry_on_quota(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    operation: str = "docs_api_call",
) -> T:
    """
    Await fn, retrying transient API failures with exponential backoff.

    Non-retryable errors propagate immediately. Cancellation of the calling
    task interrupts any pending backoff sleep and propagates as
    asyncio.CancelledError.

    Args:
        fn: Zero-argument coroutine factory performing the API call
        max_retries: Number of retries after the first attempt
        base_delay: Initial backoff in seconds
        max_delay: Cap on the un-jittered backoff in seconds
        operation: Label used in log messages

    Returns:
        Whatever fn returns on success

    Raises:
        RetryExhaustedError: If every attempt failed with a retryable error
    """
    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except Exception as error:
            if not is_retryable_error(error):
                raise
            if attempt == max_retries:
                logger.error(
                    f"{operation} still failing after {max_retries} retries: {error}"
                )
                raise RetryExhaustedError(max_retries, error) from error

            delay = compute_backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"Transient error in {operation} on attempt {attempt + 1}: {error}. "
                f"Retrying in {delay:.2f} seconds..."
            )
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises.
    raise RuntimeError(f"{operation}: retry loop exited unexpectedly")


def with_quota_retry(operation: str):
    """
    Decorator form of retry_on_quota for coroutine methods.

    The wrapped callable may expose a ``config`` attribute on its first
    argument (the manager instance); its max_retries, base_delay and
    max_delay values override the defaults.

    Args:
        operation: Label used in log messages
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            config = getattr(args[0], "config", None) if args else None
            return await retry_on_quota(
                lambda: func(*args, **kwargs),
                max_retries=getattr(config, "max_retries", DEFAULT_MAX_RETRIES),
                base_delay=getattr(config, "base_delay", DEFAULT_BASE_DELAY),
                max_delay=getattr(config, "max_delay", DEFAULT_MAX_DELAY),
                operation=operation,
            )

        return wrapper

    return decorator


def utf16_len(text: str) -> int:
    """Length of text in UTF-16 code units, the unit of Docs API indices."""
    return len(text.encode("utf-16-le")) // 2


def utf16_offset(text: str, char_index: int) -> int:
    """Convert a Python string index into a UTF-16 offset within text."""
    return utf16_len(text[:char_index])
