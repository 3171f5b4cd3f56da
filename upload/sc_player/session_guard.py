"""
Upload Session Guard

The StarCapture Player backend runs one ingestion pipeline per API key, so
a provider instance may have at most one direct-upload session open.

UploadSessionGuard hands out SessionLease objects. Only the current lease
can bind a server session. Acquiring a new lease revokes the previous one
and cancels its session; the revoked run notices at its next checkpoint.

This module also maps the local bundle onto the server's per-file plan.
"""

import logging
import threading
import uuid
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from upload.constants import (
    FILE_TYPE_EVENT_THUMBNAIL,
    FILE_TYPE_EVENTS_JSON,
    FILE_TYPE_MAIN_THUMBNAIL,
    FILE_TYPE_VIDEO,
    SESSION_PROTOCOL_KEYED,
    ErrorCode,
)
from upload.interfaces.provider_interface import CancellationToken, UploadError
from upload.models.session import FileMapping, RequiredFiles, SessionHandle

SessionCanceller = Callable[[str], None]

SUPERSEDED_MESSAGE = "Upload session superseded by a newer direct upload"


class SessionLease:
    """
    Right to own the provider's single upload session.

    The lease's cancel token is a child of the job's token: it trips when the
    job is cancelled or when the lease is revoked.
    """

    def __init__(self, job_token: Optional[CancellationToken] = None):
        self.lease_id = uuid.uuid4().hex[:8]
        self.cancel_token = CancellationToken(parent=job_token)
        self.revoked = False
        self._session: Optional[SessionHandle] = None
        self._canceller: Optional[SessionCanceller] = None
        self._lock = threading.Lock()

    @property
    def session(self) -> Optional[SessionHandle]:
        return self._session

    def _bind(self, handle: SessionHandle, canceller: SessionCanceller) -> None:
        with self._lock:
            self._session = handle
            self._canceller = canceller

    def take_session(self) -> Tuple[Optional[SessionHandle], Optional[SessionCanceller]]:
        """Detach the bound session so exactly one caller cancels it"""
        with self._lock:
            handle, canceller = self._session, self._canceller
            self._session = None
            self._canceller = None
        return handle, canceller

    def _revoke(self) -> None:
        self.revoked = True
        self.cancel_token.cancel()

    def checkpoint(self) -> None:
        """
        Stop here if the run should not continue.

        Raises:
            UploadError: SESSION_CONFLICT once superseded
            UploadCancelledError: once the job is cancelled
        """
        if self.revoked:
            raise UploadError(SUPERSEDED_MESSAGE, code=ErrorCode.SESSION_CONFLICT)
        self.cancel_token.raise_if_cancelled()

    def __repr__(self) -> str:
        session_id = self._session.session_id if self._session else None
        return (
            f"SessionLease(id={self.lease_id}, session={session_id}, "
            f"revoked={self.revoked})"
        )


class UploadSessionGuard:
    """
    Enforces one direct-upload session per provider instance.

    State is in memory only; a restart always begins idle and server-side
    leftovers expire on the backend.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._current: Optional[SessionLease] = None

    def acquire(self, job_token: Optional[CancellationToken] = None) -> SessionLease:
        """
        Take the lease for a new direct upload, superseding any current one.

        The superseded session is cancelled before this returns (best-effort).
        """
        lease = SessionLease(job_token)
        with self._lock:
            previous = self._current
            self._current = lease

        if previous is not None:
            self.logger.warning(f"Superseding active direct upload {previous!r}")
            previous._revoke()
            self.cancel_lease_session(previous)

        return lease

    def bind(
        self,
        lease: SessionLease,
        handle: SessionHandle,
        canceller: SessionCanceller,
    ) -> bool:
        """
        Attach a freshly created server session to the lease.

        Returns:
            False if the lease was revoked meanwhile (caller must cancel
            the session it just created)
        """
        with self._lock:
            if self._current is not lease or lease.revoked:
                return False
            lease._bind(handle, canceller)
        return True

    def release(self, lease: SessionLease) -> None:
        """End of a run: forget the lease if it is still the current one"""
        with self._lock:
            if self._current is lease:
                self._current = None

    def cancel_lease_session(self, lease: SessionLease) -> None:
        """DELETE the lease's session, logging instead of raising"""
        handle, canceller = lease.take_session()
        if handle is None or canceller is None:
            return

        self.logger.info(f"Canceling session: {handle.session_id}")
        try:
            canceller(handle.session_id)
            self.logger.info(f"Session {handle.session_id} canceled successfully")
        except UploadError as e:
            self.logger.warning(f"Failed to cancel session {handle.session_id}: {e}")

    def force_cancel(self) -> None:
        """Revoke the current lease and cancel its session"""
        with self._lock:
            current = self._current
            self._current = None

        if current is None:
            return

        self.logger.info("Force canceling current direct upload")
        current._revoke()
        self.cancel_lease_session(current)

    def get_upload_status(self) -> dict:
        with self._lock:
            current = self._current
        session = current.session if current else None
        return {
            "upload_in_progress": current is not None,
            "current_session_id": session.session_id if session else None,
        }


# =============================================================================
# FILE MAPPING
# =============================================================================


def map_files_to_session(
    required: RequiredFiles,
    handle: SessionHandle,
) -> List[FileMapping]:
    """
    Pair local files with the server's per-file upload plan.

    Video, events JSON and main thumbnail map one-to-one by type. Event
    thumbnails map by event id (file stem == file_key stem) on keyed
    sessions, by position on legacy ones.
    """
    logger = logging.getLogger(__name__)
    mappings: List[FileMapping] = []

    singles = (
        (FILE_TYPE_VIDEO, required.video_path),
        (FILE_TYPE_EVENTS_JSON, required.json_path),
        (FILE_TYPE_MAIN_THUMBNAIL, required.main_thumb_path),
    )
    for file_type, local_path in singles:
        session_files = handle.files_of_type(file_type)
        if session_files:
            mappings.append(FileMapping(local_path, session_files[0], local_path.stat().st_size))

    thumb_files = handle.files_of_type(FILE_TYPE_EVENT_THUMBNAIL)

    if handle.protocol_version >= SESSION_PROTOCOL_KEYED:
        by_event_id = {thumb.stem: thumb for thumb in required.event_thumbnails}
        for session_file in thumb_files:
            if not session_file.file_key:
                logger.warning(f"Event thumbnail missing file_key: {session_file.file_id}")
                continue

            event_id = Path(session_file.file_key).stem
            local_path = by_event_id.get(event_id)
            if local_path is None:
                logger.error(f"No local file found for event ID: {event_id}")
                continue
            mappings.append(FileMapping(local_path, session_file, local_path.stat().st_size))
    else:
        for local_path, session_file in zip(required.event_thumbnails, thumb_files):
            mappings.append(FileMapping(local_path, session_file, local_path.stat().st_size))

    logger.info(f"Mapped {len(mappings)} files for upload")
    for index, mapping in enumerate(mappings, start=1):
        key = mapping.session_file.file_key or mapping.session_file.file_id
        logger.debug(f"  {index}. {mapping.local_path.name} -> {mapping.file_type} (Key: {key})")

    return mappings
