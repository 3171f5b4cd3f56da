"""
Provider Interface

Abstract interface for upload backends (S3, YouTube, StarCapture Player).
Follows Dependency Inversion Principle - the upload manager depends on this
abstraction, never on a concrete cloud SDK.

Besides the ABC this module holds the value types that cross the
provider/manager boundary: progress updates, auth check results, connection
test results, the S3-then-index delegation marker, cancellation tokens and
the upload error taxonomy.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

from upload.constants import AccountType, ErrorCode

# =============================================================================
# ERRORS
# =============================================================================


class UploadError(Exception):
    """
    Exception raised for upload-related errors.

    Examples:
    - Account or provider missing
    - Credentials rejected
    - Required file missing or too large
    - Remote transfer failed
    """

    def __init__(self, message: str, code: ErrorCode = ErrorCode.FAILED):
        super().__init__(message)
        self.code = code


class UploadCancelledError(UploadError):
    """Raised at a checkpoint once the job's cancellation token is set"""

    def __init__(self, message: str = "Upload cancelled"):
        super().__init__(message, code=ErrorCode.CANCELLED)


class RemoteTransferError(UploadError):
    """Network or HTTP failure while sending bytes to a remote URL"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, code=ErrorCode.REMOTE_TRANSFER_FAILED)
        self.status_code = status_code


class ApiRequestError(UploadError):
    """Non-2xx or unparseable response from the StarCapture Player API"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.FAILED,
    ):
        super().__init__(message, code=code)
        self.status_code = status_code


class AccountStoreError(UploadError):
    """Encrypted account store could not be read or written"""

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.STORAGE_ERROR)


# =============================================================================
# CANCELLATION
# =============================================================================


class CancellationToken:
    """
    Cooperative cancellation flag shared between a job and its provider.

    A token may have a parent; it then reports cancelled as soon as either
    itself or the parent is cancelled.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.is_cancelled

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise UploadCancelledError()


# =============================================================================
# VALUE TYPES
# =============================================================================


@dataclass(frozen=True)
class ProgressUpdate:
    """
    One progress report from a provider.

    Attributes:
        percentage: 0-100 for the provider's own transfer
        bytes_uploaded: Bytes sent so far
        total_bytes: Total bytes expected (None if unknown)
        message: Optional phase description ("Uploading video...")
    """

    percentage: float
    bytes_uploaded: int = 0
    total_bytes: Optional[int] = None
    message: Optional[str] = None


ProgressCallback = Callable[[ProgressUpdate], None]


@dataclass(frozen=True)
class CredentialsOnly:
    """Provider can only say yes/no about credentials"""

    valid: bool


@dataclass(frozen=True)
class DetailedAccount:
    """Provider validated the account and may report profile or new tokens"""

    valid: bool
    account_info: Optional[Dict[str, Any]] = None
    refreshed_tokens: Optional[Dict[str, Any]] = None


AuthCheckResult = Union[CredentialsOnly, DetailedAccount]


@dataclass
class ConnectionTestResult:
    """Outcome of a connectivity test against a provider"""

    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class S3IndexDelegation:
    """
    Returned by a provider that wants the upload manager to push the file to
    an S3 account first and then run a post-upload action with index_data.
    """

    s3_account_id: str
    post_upload_action: str
    index_data: Dict[str, Any] = field(default_factory=dict)
    message: str = ""


UploadOutcome = Union[Dict[str, Any], S3IndexDelegation]


# =============================================================================
# INTERFACE
# =============================================================================


class ProviderInterface(ABC):
    """
    Abstract base class for upload providers.

    Any provider implementation (S3, YouTube, StarCapture Player, mock)
    must implement these methods. Providers are stateless with respect to
    accounts: credentials and config are passed on every call.
    """

    provider_type: AccountType
    display_name: str = ""

    @abstractmethod
    def check_auth(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> AuthCheckResult:
        """
        Validate credentials for an account.

        Args:
            credentials: Provider-specific secret map
            config: Provider-specific account configuration

        Returns:
            CredentialsOnly or DetailedAccount

        Raises:
            UploadError: If the credentials are malformed or rejected
        """

    @abstractmethod
    def test_connection(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> ConnectionTestResult:
        """
        Test connectivity without uploading anything.

        Returns:
            ConnectionTestResult (success=False instead of raising on
            expected failures)
        """

    @abstractmethod
    def upload(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
        file_path: str,
        metadata: Dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> UploadOutcome:
        """
        Upload a file.

        on_progress may be called any number of times before this returns.
        cancel_token is checked at the provider's natural checkpoints.

        Returns:
            Result dict, or an S3IndexDelegation marker

        Raises:
            UploadError: On failure (UploadCancelledError when cancelled)
        """

    def refresh_credentials(
        self,
        credentials: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Force a credential refresh.

        Returns:
            New credentials, or None if the provider cannot refresh
        """
        return None

    def force_cancel(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> None:
        """Abort any provider-level session state (no-op by default)"""
