"""
Upload Module

Multi-provider upload queue for recorded videos: Amazon S3 (and
S3-compatible storage), YouTube and StarCapture Player.

Public API:
    - UploadManager: Queue, accounts and dispatch orchestrator
    - UploadConfig: YAML-backed upload settings
    - AccountType / JobStatus / ErrorCode: Enums
    - UploadError: Base error for every upload failure
    - create_providers: Factory function

Usage:
    from upload import UploadManager

    manager = UploadManager()
    manager.initialize()
    manager.queue_upload(account_id, "/path/to/video.mp4", {"title": "Run"})
    manager.start_queue()
"""

from upload.config import UploadConfig
from upload.constants import AccountType, ErrorCode, JobStatus
from upload.controllers.upload_manager import UploadManager
from upload.factory import create_providers
from upload.interfaces.provider_interface import UploadCancelledError, UploadError

# Public API
__all__ = [
    "AccountType",
    "ErrorCode",
    "JobStatus",
    "UploadCancelledError",
    "UploadConfig",
    "UploadError",
    "UploadManager",
    "create_providers",
]
