"""
Models Package

Data classes for accounts, upload jobs and direct upload sessions.
"""

from upload.models.account import Account, generate_account_id
from upload.models.session import (
    FileMapping,
    MultipartPart,
    RequiredFiles,
    SessionFile,
    SessionHandle,
)
from upload.models.upload_job import UploadJob, generate_upload_id

__all__ = [
    "Account",
    "FileMapping",
    "MultipartPart",
    "RequiredFiles",
    "SessionFile",
    "SessionHandle",
    "UploadJob",
    "generate_account_id",
    "generate_upload_id",
]
