"""
Controllers Package

High-level upload coordinators.
"""

from upload.controllers.upload_manager import UploadManager

__all__ = [
    "UploadManager",
]
