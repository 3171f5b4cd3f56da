"""
StarCapture Player Direct Upload Package

Multi-file upload sessions: preflight, single-session guard, presigned
transfers and the per-session run.
"""

from upload.sc_player.direct_upload import DirectUploader
from upload.sc_player.file_validation import validate_file_sizes, validate_required_files
from upload.sc_player.session_guard import (
    SessionLease,
    UploadSessionGuard,
    map_files_to_session,
)
from upload.sc_player.transfer import PresignedTransfer, get_part_size

__all__ = [
    "DirectUploader",
    "PresignedTransfer",
    "SessionLease",
    "UploadSessionGuard",
    "get_part_size",
    "map_files_to_session",
    "validate_file_sizes",
    "validate_required_files",
]
