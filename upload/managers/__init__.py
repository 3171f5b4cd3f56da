"""
Managers Package

Persistence for accounts (encrypted) and upload queue state (JSON).
"""

from upload.managers.account_store import AccountStore
from upload.managers.upload_state_store import UploadStateStore

__all__ = [
    "AccountStore",
    "UploadStateStore",
]
