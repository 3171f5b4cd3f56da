"""
Upload Job Models

Data class tracking one file upload from enqueue to a terminal state:
queued -> uploading -> completed/failed/cancelled
"""

import secrets
import time
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from upload.constants import AccountType, JobStatus
from upload.interfaces.provider_interface import ProgressUpdate


def generate_upload_id() -> str:
    """Unique upload id: upl_<epoch ms>_<8 hex chars>"""
    return f"upl_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class UploadJob:
    """
    Represents one queued or running upload.

    A job lives in exactly one of the manager's containers at a time: the
    FIFO queue, the active map or the completed history.
    """

    id: str
    account_id: str
    account_type: AccountType
    file_path: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    status: JobStatus = JobStatus.QUEUED
    progress: float = 0.0  # 0-100
    bytes_uploaded: int = 0
    total_bytes: int = 0
    status_message: Optional[str] = None

    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not isinstance(self.account_type, AccountType):
            self.account_type = AccountType(self.account_type)
        if not isinstance(self.status, JobStatus):
            self.status = JobStatus(self.status)

    def mark_started(self) -> None:
        """Mark job as uploading"""
        self.status = JobStatus.UPLOADING
        self.started_at = datetime.now()
        self.error = None

    def mark_completed(self, result: Optional[Dict[str, Any]]) -> None:
        """Mark job as successfully uploaded"""
        self.status = JobStatus.COMPLETED
        self.progress = 100.0
        self.bytes_uploaded = self.total_bytes
        self.result = result
        self.status_message = None
        self.completed_at = datetime.now()

    def mark_failed(self, error: str) -> None:
        """Mark job as failed with a short human-readable message"""
        self.status = JobStatus.FAILED
        self.error = error
        self.completed_at = datetime.now()

    def mark_cancelled(self) -> None:
        """Mark job as cancelled by the user"""
        self.status = JobStatus.CANCELLED
        self.completed_at = datetime.now()

    def apply_progress(
        self,
        update: ProgressUpdate,
        scale: float = 1.0,
        monotonic: bool = False,
    ) -> None:
        """
        Copy a provider progress report onto the job.

        Args:
            update: Provider report
            scale: Share of the job this report covers (0-1)
            monotonic: Never move the percentage backwards
        """
        percentage = update.percentage * scale
        if monotonic:
            percentage = max(percentage, self.progress)
        self.progress = percentage
        self.bytes_uploaded = update.bytes_uploaded
        if update.message:
            self.status_message = update.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a detached dictionary for persistence and events"""
        return {
            "id": self.id,
            "account_id": self.account_id,
            "account_type": self.account_type.value,
            "file_path": self.file_path,
            "metadata": deepcopy(self.metadata),
            "status": self.status.value,
            "progress": self.progress,
            "bytes_uploaded": self.bytes_uploaded,
            "total_bytes": self.total_bytes,
            "status_message": self.status_message,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "error": self.error,
            "result": deepcopy(self.result),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UploadJob":
        """Create UploadJob from a persisted dictionary"""
        return cls(
            id=data["id"],
            account_id=data["account_id"],
            account_type=AccountType(data["account_type"]),
            file_path=data["file_path"],
            metadata=data.get("metadata") or {},
            status=JobStatus(data.get("status", JobStatus.QUEUED.value)),
            progress=data.get("progress", 0.0),
            bytes_uploaded=data.get("bytes_uploaded", 0),
            total_bytes=data.get("total_bytes", 0),
            status_message=data.get("status_message"),
            created_at=datetime.fromisoformat(data["created_at"]),
            started_at=(
                datetime.fromisoformat(data["started_at"])
                if data.get("started_at")
                else None
            ),
            completed_at=(
                datetime.fromisoformat(data["completed_at"])
                if data.get("completed_at")
                else None
            ),
            error=data.get("error"),
            result=data.get("result"),
        )

    def __repr__(self) -> str:
        return (
            f"UploadJob(id='{self.id}', account='{self.account_id}', "
            f"status={self.status.value}, progress={self.progress:.1f})"
        )
