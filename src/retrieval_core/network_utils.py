from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

import requests

T = TypeVar("T")

# Exceptions that mean "the archive service could not be reached at all";
# these feed the archive client's circuit breaker.
CONNECTIVITY_EXCEPTIONS: tuple[type[Exception], ...] = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)


def _is_retryable_http_exception(
    exc: Exception,
    retry_on_429: bool = True,
) -> bool:
    """Check if an HTTP exception is retryable.

    Args:
        exc: The exception to check
        retry_on_429: Whether to retry on HTTP 429 Too Many Requests

    Returns:
        True if the exception is retryable
    """
    if isinstance(exc, requests.exceptions.HTTPError):
        status_code = exc.response.status_code if exc.response is not None else None
        if status_code is None:
            return False
        if status_code >= 500:
            return True
        if status_code == 429 and retry_on_429:
            return True
        return False
    return isinstance(
        exc,
        (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            requests.exceptions.ChunkedEncodingError,
            requests.exceptions.ContentDecodingError,
        ),
    )


def _is_retryable_os_error(exc: Exception) -> bool:
    """Transient share errors: anything OSError-shaped except a plain miss."""
    return isinstance(exc, OSError) and not isinstance(
        exc, (FileNotFoundError, NotADirectoryError, IsADirectoryError)
    )


def is_connectivity_error(exc: BaseException) -> bool:
    return isinstance(exc, CONNECTIVITY_EXCEPTIONS)


def _with_retries(
    fn: Callable[[], T],
    *,
    max_attempts: int = 3,
    backoff_base: float = 2.0,
    backoff_max: float = 60.0,
    on_retry: Callable[[int, Exception], None] | None = None,
    is_retryable: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute a function with retry logic.

    Args:
        fn: The function to execute
        max_attempts: Maximum number of attempts
        backoff_base: Base for exponential backoff (seconds)
        backoff_max: Maximum backoff time (seconds)
        on_retry: Optional callback called on each retry with (attempt_num, exception)
        is_retryable: Predicate deciding which exceptions are retried
            (default: transient HTTP errors)
        sleep: Sleep function (injected by tests)

    Returns:
        The result of fn()

    Raises:
        Exception: The last exception if all retries fail
    """
    check = is_retryable or _is_retryable_http_exception
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return fn()
        except Exception as exc:
            if not check(exc) or attempt >= attempts - 1:
                raise
            if on_retry:
                on_retry(attempt + 1, exc)
            sleep(min(backoff_base**attempt, backoff_max))
    raise RuntimeError("unreachable")
