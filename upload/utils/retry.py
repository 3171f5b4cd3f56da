"""
Retry Utilities

Retry classification and exponential backoff for remote transfers.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

import requests

from upload.constants import (
    DIRECT_UPLOAD_MAX_RETRIES,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_MAX_DELAY_SECONDS,
)
from upload.interfaces.provider_interface import (
    ApiRequestError,
    CancellationToken,
    RemoteTransferError,
    UploadCancelledError,
    UploadError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Substrings of low-level error messages that mean "try again"
_RETRYABLE_MARKERS = (
    "econnreset",
    "etimedout",
    "enotfound",
    "timeout",
    "timed out",
    "connection reset",
    "connection aborted",
    "name or service not known",
    "temporary failure in name resolution",
)

# Errors where the server may still be processing: keep the session alive
_TRANSIENT_MARKERS = ("timeout", "timed out", "econnreset", "connection reset")


def backoff_delay(
    attempt: int,
    base: float = RETRY_BASE_DELAY_SECONDS,
    max_delay: float = RETRY_MAX_DELAY_SECONDS,
) -> float:
    """
    Delay before retry number `attempt` (1-based): 1s, 2s, 4s, ... capped.

    Example:
        backoff_delay(1) -> 1.0
        backoff_delay(5) -> 10.0
    """
    return min(base * (2 ** (attempt - 1)), max_delay)


def is_retryable_error(error: BaseException) -> bool:
    """
    Check whether a failed transfer is worth retrying.

    Retryable: connection errors, timeouts, DNS failures and 5xx responses.
    Cancellation and 4xx responses are never retried.
    """
    if isinstance(error, UploadCancelledError):
        return False

    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True

    if isinstance(error, (RemoteTransferError, ApiRequestError)):
        if error.status_code is not None:
            return error.status_code >= 500

    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def is_transient_error(error: BaseException) -> bool:
    """Timeout or connection reset: the remote side may not have failed"""
    if isinstance(error, requests.Timeout):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def retry_call(
    func: Callable[[], T],
    max_retries: int = DIRECT_UPLOAD_MAX_RETRIES,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], None] = time.sleep,
    cancel_token: Optional[CancellationToken] = None,
    description: str = "operation",
) -> T:
    """
    Call func, retrying up to max_retries times after the first attempt.

    Args:
        func: Zero-argument callable to run
        max_retries: Retries after the first attempt (3 -> at most 4 calls)
        should_retry: Classifies an exception as retryable
        sleep: Injected for tests
        cancel_token: Checked before every attempt
        description: Used in log messages

    Returns:
        Whatever func returns

    Raises:
        The last exception once it is not retryable or retries run out
    """
    attempt = 0
    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            return func()
        except UploadError as e:
            error: BaseException = e
        except (requests.RequestException, OSError) as e:
            error = e

        attempt += 1
        if attempt > max_retries or not should_retry(error):
            logger.error(
                f"{description} failed permanently after {attempt} attempt(s): {error}",
            )
            raise error

        delay = backoff_delay(attempt)
        logger.warning(
            f"{description} failed (attempt {attempt}/{max_retries + 1}): {error}. "
            f"Retrying in {delay:.0f}s",
        )
        sleep(delay)
