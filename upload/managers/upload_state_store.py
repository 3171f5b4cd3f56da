"""
Upload State Store

Plain JSON persistence of the upload queue and completed history
(upload-state.json): {"queued": [...], "completed": [...], "saved_at": ...}
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Tuple

from config.settings import UPLOAD_STATE_FILE_NAME
from upload.constants import COMPLETED_HISTORY_LIMIT, ErrorCode
from upload.interfaces.provider_interface import UploadError
from upload.models.upload_job import UploadJob


class UploadStateStore:
    """Save and restore queued and completed upload jobs"""

    def __init__(self, data_dir: Path, history_limit: int = COMPLETED_HISTORY_LIMIT):
        self.logger = logging.getLogger(__name__)
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / UPLOAD_STATE_FILE_NAME
        self.history_limit = history_limit
        self._lock = threading.Lock()

    def load(self) -> Tuple[List[UploadJob], List[UploadJob]]:
        """
        Restore (queued, completed).

        Queued jobs whose file no longer exists are dropped; they would
        fail immediately anyway. Only the newest history_limit completed
        jobs are kept. History entries that never reached a terminal
        status are ignored.

        Raises:
            UploadError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            self.logger.info("No existing upload state file found")
            return [], []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                state = json.load(f)
            queued = [UploadJob.from_dict(item) for item in state.get("queued") or []]
            completed = [
                UploadJob.from_dict(item) for item in state.get("completed") or []
            ]
        except (OSError, ValueError, KeyError) as e:
            raise UploadError(
                f"Failed to load upload state: {e}",
                code=ErrorCode.STORAGE_ERROR,
            ) from e

        restored = [job for job in queued if Path(job.file_path).exists()]
        dropped = len(queued) - len(restored)
        if dropped:
            self.logger.info(f"Dropped {dropped} queued uploads whose files are gone")

        completed = [job for job in completed if job.status.is_terminal]
        completed = completed[-self.history_limit:]

        self.logger.info(
            f"Restored {len(restored)} queued uploads and "
            f"{len(completed)} completed uploads",
        )
        return restored, completed

    def save(self, queued: Iterable[UploadJob], completed: Iterable[UploadJob]) -> None:
        """
        Write the queue and history atomically.

        Each save goes through its own temporary file, and saves are
        serialized so the last caller's state is the one left on disk.

        Raises:
            UploadError: If the file cannot be written
        """
        state = {
            "queued": [job.to_dict() for job in queued],
            "completed": [job.to_dict() for job in completed][-self.history_limit:],
            "saved_at": datetime.now().isoformat(),
        }

        with self._lock:
            tmp_path = None
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=self.data_dir,
                    prefix=f"{self.path.stem}.",
                    suffix=".tmp",
                    delete=False,
                ) as f:
                    tmp_path = f.name
                    json.dump(state, f, indent=2, default=str)
                os.replace(tmp_path, self.path)
            except OSError as e:
                if tmp_path and os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise UploadError(
                    f"Failed to save upload state: {e}",
                    code=ErrorCode.STORAGE_ERROR,
                ) from e
