"""Retry logic with backoff for transient storage failures.

Errors are classified into transient failures (worth retrying) and
permanent failures (retry won't help).

Transient (Retryable):
- Connection errors and timeouts (botocore and httpx)
- Server errors (5xx)
- Throttling (429, SlowDown)

Permanent (Not Retryable):
- Client errors (4xx except 408/429)
- Checksum rejections (BadDigest, InvalidDigest)
- Missing uploads (NoSuchUpload)
"""

import logging
import time
from typing import Any, Callable, Optional, Sequence

import httpx
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

logger = logging.getLogger(__name__)

# HTTP status codes that indicate transient server issues
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

# S3 error codes that are transient regardless of the status code
RETRYABLE_ERROR_CODES = {
    "RequestTimeout",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "InternalError",
    "ServiceUnavailable",
}

TRANSIENT_EXCEPTIONS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    EndpointConnectionError,
    ConnectionClosedError,
    ConnectTimeoutError,
    ReadTimeoutError,
)


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def is_retryable_error(error: Exception) -> bool:
    """Determine if an error is transient and worth retrying.

    Args:
        error: The exception that was raised.

    Returns:
        True if the error is transient and should trigger a retry,
        False if the error is permanent and retrying won't help.
    """
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES

    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code")
        if code in RETRYABLE_ERROR_CODES:
            return True
        status_code = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return status_code in RETRYABLE_STATUS_CODES

    # All other errors are not retryable by default
    return False


def retry_with_backoff(
    func: Callable[..., Any],
    max_attempts: int = 3,
    delays: Sequence[float] = (1.0, 2.0, 4.0),
    args: tuple = (),
    kwargs: Optional[dict] = None,
    description: str = "operation",
) -> Any:
    """Execute a function with retry logic and backoff.

    Args:
        func: The function to execute.
        max_attempts: Maximum number of attempts (including first try).
        delays: Sequence of delay times (seconds) between retries.
                delays[0] is used after first failure, etc.
        args: Positional arguments to pass to func.
        kwargs: Keyword arguments to pass to func.
        description: Label used in log messages.

    Returns:
        The return value of func if successful.

    Raises:
        RetryExhausted: If all attempts fail with retryable errors.
        Exception: If a non-retryable error occurs, it's raised immediately.
    """
    if kwargs is None:
        kwargs = {}

    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            last_error = e

            if not is_retryable_error(e):
                raise

            if attempt >= max_attempts:
                raise RetryExhausted(
                    f"{description} failed after {max_attempts} attempts",
                    attempts=max_attempts,
                    last_error=last_error,
                ) from last_error

            delay = delays[min(attempt - 1, len(delays) - 1)] if delays else 0.0
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description, attempt, max_attempts, e, delay,
            )
            time.sleep(delay)

    raise RetryExhausted(
        f"{description} failed after {max_attempts} attempts",
        attempts=max_attempts,
        last_error=last_error,
    )
