"""
Retry Utility Tests

Tests for retry classification and backoff.

To run these tests:
    pytest tests/upload/utils/test_retry.py -v
"""

import pytest
import requests

from upload.interfaces.provider_interface import (
    ApiRequestError,
    CancellationToken,
    RemoteTransferError,
    UploadCancelledError,
    UploadError,
)
from upload.utils.retry import (
    backoff_delay,
    is_retryable_error,
    is_transient_error,
    retry_call,
)

# =============================================================================
# CLASSIFICATION TESTS
# =============================================================================


@pytest.mark.unit
def test_backoff_doubles_and_caps():
    assert [backoff_delay(n) for n in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


@pytest.mark.unit
@pytest.mark.parametrize(
    "error, expected",
    [
        (requests.ConnectionError("boom"), True),
        (requests.Timeout("slow"), True),
        (RemoteTransferError("Upload failed with status 503", status_code=503), True),
        (RemoteTransferError("Upload failed with status 403", status_code=403), False),
        (ApiRequestError("Server error 502", status_code=502), True),
        (UploadError("read ECONNRESET"), True),
        (UploadError("Invalid credentials"), False),
        (UploadCancelledError(), False),
    ],
)
def test_is_retryable_error(error, expected):
    assert is_retryable_error(error) is expected


@pytest.mark.unit
def test_is_transient_error():
    assert is_transient_error(requests.Timeout("read timed out"))
    assert is_transient_error(UploadError("socket hang up: ECONNRESET"))
    assert not is_transient_error(UploadError("Upload failed with status 500"))


# =============================================================================
# RETRY LOOP TESTS
# =============================================================================


@pytest.mark.unit
def test_retry_call_succeeds_after_transient_failures():
    """
    Test retrying a flaky call.

    Should:
    - Retry retryable errors with backoff
    - Return the eventual result
    """
    delays = []
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise RemoteTransferError("Upload failed with status 500", status_code=500)
        return "etag"

    assert retry_call(flaky, max_retries=3, sleep=delays.append) == "etag"
    assert len(attempts) == 3
    assert delays == [1.0, 2.0]


@pytest.mark.unit
def test_retry_call_gives_up_after_max_retries():
    """Three retries means four attempts, then the last error propagates"""
    attempts = []

    def always_fails():
        attempts.append(1)
        raise RemoteTransferError("Upload failed with status 500", status_code=500)

    with pytest.raises(RemoteTransferError):
        retry_call(always_fails, max_retries=3, sleep=lambda _: None)

    assert len(attempts) == 4


@pytest.mark.unit
def test_retry_call_does_not_retry_client_errors():
    attempts = []

    def forbidden():
        attempts.append(1)
        raise RemoteTransferError("Upload failed with status 403", status_code=403)

    with pytest.raises(RemoteTransferError):
        retry_call(forbidden, sleep=lambda _: None)

    assert len(attempts) == 1


@pytest.mark.unit
def test_retry_call_checks_cancellation():
    token = CancellationToken()
    token.cancel()

    with pytest.raises(UploadCancelledError):
        retry_call(lambda: "never", cancel_token=token)
