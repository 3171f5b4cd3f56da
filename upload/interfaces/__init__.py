"""
Interfaces Package

Abstract provider interface and the value types shared with the manager.
"""

from upload.interfaces.provider_interface import (
    AccountStoreError,
    ApiRequestError,
    AuthCheckResult,
    CancellationToken,
    ConnectionTestResult,
    CredentialsOnly,
    DetailedAccount,
    ProgressCallback,
    ProgressUpdate,
    ProviderInterface,
    RemoteTransferError,
    S3IndexDelegation,
    UploadCancelledError,
    UploadError,
)

__all__ = [
    "AccountStoreError",
    "ApiRequestError",
    "AuthCheckResult",
    "CancellationToken",
    "ConnectionTestResult",
    "CredentialsOnly",
    "DetailedAccount",
    "ProgressCallback",
    "ProgressUpdate",
    "ProviderInterface",
    "RemoteTransferError",
    "S3IndexDelegation",
    "UploadCancelledError",
    "UploadError",
]
