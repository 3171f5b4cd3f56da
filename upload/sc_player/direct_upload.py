"""
Direct Upload Session Run

One direct upload to StarCapture Player:

1. Preflight the bundle against the server limits and parse the events JSON
2. Acquire the session lease (supersedes a running direct upload)
3. Create the session with the parsed events JSON and file sizes
4. Upload every mapped file with retry, notifying the server after each
5. Finish when a notification answers next_action "video_created:<id>"

Critical files (video, events JSON, main thumbnail) abort the session when
they cannot be uploaded; event thumbnails are skipped.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import requests

from upload.clients.sc_player_api import SCPlayerApiClient
from upload.constants import (
    DIRECT_UPLOAD_MAX_RETRIES,
    DIRECT_UPLOAD_PROGRESS_CAP,
    FILE_TYPE_EVENT_THUMBNAIL,
    SC_PLAYER_DEFAULT_PRIVACY,
    VIDEO_CREATED_PREFIX,
    ErrorCode,
)
from upload.interfaces.provider_interface import (
    CancellationToken,
    ProgressCallback,
    ProgressUpdate,
    UploadCancelledError,
    UploadError,
)
from upload.models.session import FileMapping, RequiredFiles, SessionHandle
from upload.sc_player.file_validation import validate_required_files
from upload.sc_player.session_guard import (
    SUPERSEDED_MESSAGE,
    SessionLease,
    UploadSessionGuard,
    map_files_to_session,
)
from upload.sc_player.transfer import FileProgress, PresignedTransfer
from upload.utils.retry import is_transient_error, retry_call


def _percentage(done: float, total: int) -> float:
    """Percentage rounded to one decimal"""
    if total <= 0:
        return 0.0
    return round(done / total * 1000) / 10


class DirectUploader:
    """
    Runs direct-upload sessions for one StarCapture Player provider.

    Usage:
        uploader = DirectUploader(UploadSessionGuard(), PresignedTransfer())
        result = uploader.upload(client, "clip.mp4", metadata, limits)
    """

    def __init__(
        self,
        guard: UploadSessionGuard,
        transfer: PresignedTransfer,
        max_retries: int = DIRECT_UPLOAD_MAX_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.logger = logging.getLogger(__name__)
        self.guard = guard
        self.transfer = transfer
        self.max_retries = max_retries
        self.sleep = sleep

    def upload(
        self,
        client: SCPlayerApiClient,
        file_path: str,
        metadata: Dict[str, Any],
        limits: Dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        Upload the recording bundle of file_path in one session.

        Returns:
            {success, video_id, view_url, share_url, session_id,
             uploaded_files, skipped_files, event_thumbnails_uploaded, message}

        Raises:
            UploadError: Validation, transfer, supersession or cancellation
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        required, events_json = self._preflight(file_path, limits)

        lease = self.guard.acquire(cancel_token)
        self.logger.info(f"Starting direct upload to SC Player: {file_path}")

        try:
            return self._run(client, lease, required, events_json, metadata, on_progress)

        except UploadCancelledError as e:
            self._abort(lease, e)
            if lease.revoked:
                raise UploadError(SUPERSEDED_MESSAGE, code=ErrorCode.SESSION_CONFLICT) from e
            raise

        except Exception as e:
            self._abort(lease, e)
            raise

        finally:
            self.guard.release(lease)

    def _preflight(
        self,
        file_path: str,
        limits: Dict[str, Any],
    ) -> Tuple[RequiredFiles, Any]:
        """Validate the bundle and parse the events JSON without touching the network"""
        required = validate_required_files(file_path, limits)

        try:
            events_json = json.loads(required.json_path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise UploadError(
                f"Events JSON is not valid JSON: {e}",
                code=ErrorCode.VALIDATION_FAILED,
            ) from e

        events = events_json.get("events") if isinstance(events_json, dict) else None
        self.logger.info(f"Parsed events JSON with {len(events or [])} events")
        return required, events_json

    def _abort(self, lease: SessionLease, error: BaseException) -> None:
        """Cancel the session unless the server may still be processing it"""
        if lease.session is None:
            return
        if is_transient_error(error):
            self.logger.warning(
                f"Keeping session {lease.session.session_id} after transient error: {error}",
            )
            lease.take_session()
            return
        self.guard.cancel_lease_session(lease)

    def _run(
        self,
        client: SCPlayerApiClient,
        lease: SessionLease,
        required: RequiredFiles,
        events_json: Any,
        metadata: Dict[str, Any],
        on_progress: Optional[ProgressCallback],
    ) -> Dict[str, Any]:
        lease.checkpoint()

        session_data = {
            "title": metadata.get("title"),
            "description": metadata.get("description"),
            "privacy": metadata.get("privacy") or SC_PLAYER_DEFAULT_PRIVACY,
            "character_id": metadata.get("character_id"),
            "organization_id": metadata.get("organization_id"),
            "starcapture_json": events_json,
            "file_sizes": required.to_session_sizes(),
        }

        self.logger.info(
            f"Creating upload session (title={session_data['title']}, "
            f"character={session_data['character_id']}, "
            f"organization={session_data['organization_id']})",
        )
        response = client.create_session(session_data)
        self.logger.debug(f"Session response: {json.dumps(response)}")
        handle = SessionHandle.from_response(response)

        if not self.guard.bind(lease, handle, client.cancel_session):
            self.logger.warning(f"Session {handle.session_id} created after supersession")
            try:
                client.cancel_session(handle.session_id)
            except UploadError as e:
                self.logger.warning(f"Failed to cancel session {handle.session_id}: {e}")
            raise UploadError(SUPERSEDED_MESSAGE, code=ErrorCode.SESSION_CONFLICT)

        self.logger.info(
            f"Created session {handle.session_id} with {len(handle.files)} files to upload",
        )

        mappings = map_files_to_session(required, handle)
        return self._upload_files(client, lease, handle, mappings, on_progress)

    def _upload_files(
        self,
        client: SCPlayerApiClient,
        lease: SessionLease,
        handle: SessionHandle,
        mappings: list,
        on_progress: Optional[ProgressCallback],
    ) -> Dict[str, Any]:
        total_bytes = sum(m.size for m in mappings)
        uploaded_bytes = 0
        uploaded_files = []
        skipped_files = []
        thumbnails_uploaded = 0

        def report(percentage: float, done: int, message: str) -> None:
            if on_progress:
                on_progress(ProgressUpdate(percentage, int(done), total_bytes, message))

        report(0, 0, "Starting file uploads...")

        for index, mapping in enumerate(mappings, start=1):
            lease.checkpoint()

            message = f"Uploading {mapping.file_type}..."
            start_bytes = uploaded_bytes
            report(_percentage(start_bytes, total_bytes), start_bytes, message)

            def on_file_bytes(file_bytes: int, start_bytes=start_bytes, message=message) -> None:
                done = start_bytes + file_bytes
                report(
                    min(_percentage(done, total_bytes), DIRECT_UPLOAD_PROGRESS_CAP),
                    done,
                    message,
                )

            upload_result = self._upload_file(client, lease, handle, mapping, on_file_bytes)

            if upload_result.get("failed"):
                skipped_files.append(mapping.local_path.name)
            else:
                uploaded_bytes += mapping.size
                uploaded_files.append(mapping.local_path.name)
                if mapping.file_type == FILE_TYPE_EVENT_THUMBNAIL:
                    thumbnails_uploaded += 1

            # Skipped thumbnails are notified too, so the server stops waiting for them
            notify_response = self._notify(client, handle, mapping, upload_result)

            report(
                min(_percentage(uploaded_bytes, total_bytes), DIRECT_UPLOAD_PROGRESS_CAP),
                uploaded_bytes,
                "Processing uploads...",
            )

            if notify_response is None:
                continue

            next_action = notify_response.get("next_action") or ""
            self.logger.info(
                f"Notification {index}/{len(mappings)} - "
                f"Status: {notify_response.get('session_status', 'unknown')}, "
                f"Next: {next_action or 'unknown'}",
            )

            if next_action.startswith(VIDEO_CREATED_PREFIX):
                video_id = next_action[len(VIDEO_CREATED_PREFIX):]
                self.logger.info(f"✅ Video created with ID: {video_id}")
                report(100.0, total_bytes, "Upload completed!")

                lease.take_session()
                view_url = client.player_url(video_id)
                return {
                    "success": True,
                    "video_id": video_id,
                    "view_url": view_url,
                    "share_url": view_url,
                    "session_id": handle.session_id,
                    "uploaded_files": uploaded_files,
                    "skipped_files": skipped_files,
                    "event_thumbnails_uploaded": thumbnails_uploaded,
                    "message": (
                        f"Video uploaded successfully to StarCapture Player "
                        f"with ID: {video_id}"
                    ),
                }

        raise UploadError("Upload completed but video was not created")

    def _upload_file(
        self,
        client: SCPlayerApiClient,
        lease: SessionLease,
        handle: SessionHandle,
        mapping: FileMapping,
        on_file_bytes: Callable[[int], None],
    ) -> Dict[str, Any]:
        """
        Upload one file with retry.

        Returns:
            Upload metadata for the notification; "failed": True when an
            event thumbnail was skipped

        Raises:
            UploadError: When a critical file cannot be uploaded
        """
        name = mapping.local_path.name
        session_file = mapping.session_file
        progress = FileProgress(on_file_bytes)
        attempts = 0
        started = time.monotonic()

        def attempt() -> Dict[str, Any]:
            nonlocal attempts
            attempts += 1
            progress.reset()

            if session_file.is_multipart:
                self.logger.info(f"Using multipart upload for {name} (attempt {attempts})")
                return self.transfer.upload_multipart(
                    client,
                    handle.session_id,
                    session_file,
                    str(mapping.local_path),
                    progress.add,
                    lease.cancel_token,
                )

            self.logger.info(f"Using single upload for {name} (attempt {attempts})")
            self.transfer.put_file(
                session_file.url,
                str(mapping.local_path),
                session_file.headers,
                progress.add,
                lease.cancel_token,
            )
            return {"multipart_upload": False}

        try:
            result = retry_call(
                attempt,
                max_retries=self.max_retries,
                sleep=self.sleep,
                cancel_token=lease.cancel_token,
                description=f"Upload of {name}",
            )
        except UploadCancelledError:
            raise
        except (UploadError, requests.RequestException, OSError) as e:
            if mapping.file_type == FILE_TYPE_EVENT_THUMBNAIL:
                self.logger.warning(f"Skipping failed event thumbnail: {name} ({e})")
                return {
                    "multipart_upload": False,
                    "upload_duration_ms": 0,
                    "retry_count": attempts - 1,
                    "failed": True,
                }
            raise UploadError(
                f"Failed to upload critical file {name}: {e}",
                code=ErrorCode.REMOTE_TRANSFER_FAILED,
            ) from e

        self.logger.info(f"File upload successful: {name}")
        result["upload_duration_ms"] = int((time.monotonic() - started) * 1000)
        result["retry_count"] = attempts - 1
        return result

    def _notify(
        self,
        client: SCPlayerApiClient,
        handle: SessionHandle,
        mapping: FileMapping,
        upload_result: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Tell the server a file is done.

        Returns:
            Server response, or None if the notification failed (logged)
        """
        payload_metadata = {
            "multipart_upload": upload_result.get("multipart_upload", False),
            "upload_duration_ms": upload_result.get("upload_duration_ms", 0),
            "retry_count": upload_result.get("retry_count", 0),
        }
        if upload_result.get("total_parts"):
            payload_metadata["total_parts"] = upload_result["total_parts"]

        payload = {
            "file_id": mapping.session_file.file_id,
            "status": "completed",
            "message": "Upload completed successfully",
            "metadata": payload_metadata,
        }

        try:
            return client.notify_file(handle.session_id, payload)
        except UploadError as e:
            self.logger.warning(
                f"Failed to notify completion for {mapping.local_path.name}: {e}",
            )
            if mapping.file_type != FILE_TYPE_EVENT_THUMBNAIL:
                self.logger.warning(
                    f"Notification failure for critical file {mapping.local_path.name} "
                    f"may cause issues",
                )
            return None
