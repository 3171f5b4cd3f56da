"""
Direct Upload Run Tests

Tests for one StarCapture Player direct-upload session with a mocked API
client and transfer:
- Per-file retry with backoff and thumbnail skipping
- Critical file failure cancelling the session
- Finishing on the video_created notification

To run these tests:
    pytest tests/upload/sc_player/test_direct_upload.py -v
"""

import os
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from upload.constants import ErrorCode
from upload.interfaces.provider_interface import (
    CancellationToken,
    RemoteTransferError,
    UploadCancelledError,
    UploadError,
)
from upload.models.session import SessionHandle
from upload.sc_player.direct_upload import DirectUploader
from upload.sc_player.session_guard import UploadSessionGuard


def session_response(event_ids, session_id="sess_1"):
    files = [
        {"file_id": "f_video", "file_type": "video", "url": "https://put/video"},
        {"file_id": "f_json", "file_type": "events_json", "url": "https://put/json"},
        {"file_id": "f_main", "file_type": "main_thumbnail", "url": "https://put/main"},
    ]
    files.extend(
        {
            "file_id": f"f_{event_id}",
            "file_type": "event_thumbnail",
            "url": f"https://put/{event_id}",
            "file_key": f"sessions/{session_id}/thumbs/{event_id}.jpg",
        }
        for event_id in event_ids
    )
    return {"session_id": session_id, "files": files, "protocol_version": 2}


class FakeTransfer:
    """put_file stand-in; URLs map to the HTTP status they answer with"""

    def __init__(self, statuses=None):
        self.statuses = statuses or {}
        self.calls = []

    def put_file(self, url, file_path, headers=None, on_bytes=None, cancel_token=None):
        self.calls.append(url)
        status = self.statuses.get(url, 200)
        if status >= 400:
            raise RemoteTransferError(f"Upload failed with status {status}", status_code=status)
        if on_bytes:
            on_bytes(os.path.getsize(file_path))


@pytest.fixture
def five_thumb_recording(recording):
    thumbs_dir = Path(recording["video"]).parent / "run_thumbs"
    for index in (4, 5):
        (thumbs_dir / f"evt_{index}.jpg").write_bytes(b"e" * 128)
    return recording


@pytest.fixture
def api_client():
    client = MagicMock()
    client.create_session.return_value = session_response(
        ["evt_1", "evt_2", "evt_3", "evt_4", "evt_5"],
    )
    client.player_url.side_effect = lambda video_id: f"https://player/watch?v={video_id}"
    return client


def notify_until_created(client, total_files, video_id="vid_9"):
    responses = [{"next_action": "wait", "session_status": "uploading"}] * (total_files - 1)
    responses.append({"next_action": f"video_created:{video_id}", "session_status": "done"})
    client.notify_file.side_effect = responses


def make_uploader(transfer, sleeps):
    return DirectUploader(UploadSessionGuard(), transfer, sleep=sleeps.append)


# =============================================================================
# SUCCESS TESTS
# =============================================================================


@pytest.mark.unit
def test_failed_thumbnail_is_skipped_after_retries(five_thumb_recording, api_client):
    """
    Test five thumbnails where one keeps answering 500.

    Should:
    - Retry the failing thumbnail 3 times with 1s/2s/4s backoff
    - Skip it and still notify the server
    - Finish with the created video and 4 thumbnails uploaded
    """
    transfer = FakeTransfer({"https://put/evt_3": 500})
    sleeps = []
    notify_until_created(api_client, total_files=8)
    progress = []

    result = make_uploader(transfer, sleeps).upload(
        api_client,
        five_thumb_recording["video"],
        {"title": "Run", "character_id": "char_1"},
        {},
        on_progress=progress.append,
    )

    assert transfer.calls.count("https://put/evt_3") == 4
    assert sleeps == [1.0, 2.0, 4.0]

    assert result["success"] is True
    assert result["video_id"] == "vid_9"
    assert result["view_url"] == "https://player/watch?v=vid_9"
    assert result["skipped_files"] == ["evt_3.jpg"]
    assert result["event_thumbnails_uploaded"] == 4
    assert api_client.notify_file.call_count == 8
    api_client.cancel_session.assert_not_called()

    percentages = [update.percentage for update in progress]
    assert max(percentages[:-1]) <= 95.0
    assert percentages[-1] == 100.0


@pytest.mark.unit
def test_session_request_carries_events_and_sizes(recording, api_client):
    api_client.create_session.return_value = session_response(["evt_1", "evt_2", "evt_3"])
    notify_until_created(api_client, total_files=6)

    make_uploader(FakeTransfer(), []).upload(
        api_client,
        recording["video"],
        {"title": "Run", "description": "Bounty"},
        {},
    )

    session_data = api_client.create_session.call_args.args[0]
    assert session_data["title"] == "Run"
    assert session_data["privacy"] == "public"
    assert session_data["starcapture_json"] == {"events": [{"id": "evt_1"}]}
    assert session_data["file_sizes"]["video"] == 4096


@pytest.mark.unit
def test_early_video_created_stops_uploading(recording, api_client):
    api_client.create_session.return_value = session_response(["evt_1", "evt_2", "evt_3"])
    api_client.notify_file.return_value = {"next_action": "video_created:vid_1"}
    transfer = FakeTransfer()

    result = make_uploader(transfer, []).upload(api_client, recording["video"], {}, {})

    assert result["video_id"] == "vid_1"
    assert transfer.calls == ["https://put/video"]


# =============================================================================
# FAILURE TESTS
# =============================================================================


@pytest.mark.unit
def test_critical_file_failure_cancels_session(recording, api_client):
    """
    Test a video PUT rejected with 403.

    Should:
    - Not retry a 4xx
    - Raise a critical-file error
    - DELETE the server session
    """
    api_client.create_session.return_value = session_response(["evt_1"])
    transfer = FakeTransfer({"https://put/video": 403})
    sleeps = []

    with pytest.raises(UploadError) as exc_info:
        make_uploader(transfer, sleeps).upload(api_client, recording["video"], {}, {})

    assert str(exc_info.value).startswith("Failed to upload critical file run.mp4")
    assert exc_info.value.code == ErrorCode.REMOTE_TRANSFER_FAILED
    assert sleeps == []
    api_client.cancel_session.assert_called_once_with("sess_1")


@pytest.mark.unit
def test_no_video_created_is_an_error(recording, api_client):
    api_client.create_session.return_value = session_response(["evt_1", "evt_2", "evt_3"])
    api_client.notify_file.return_value = {"next_action": "wait"}

    with pytest.raises(UploadError, match="Upload completed but video was not created"):
        make_uploader(FakeTransfer(), []).upload(api_client, recording["video"], {}, {})

    api_client.cancel_session.assert_called_once_with("sess_1")


@pytest.mark.unit
def test_invalid_events_json(recording, api_client):
    recording["events_json"].write_text("{not json")

    with pytest.raises(UploadError) as exc_info:
        make_uploader(FakeTransfer(), []).upload(api_client, recording["video"], {}, {})

    assert exc_info.value.code == ErrorCode.VALIDATION_FAILED
    api_client.create_session.assert_not_called()


@pytest.mark.unit
def test_failed_notification_is_not_fatal(recording, api_client):
    api_client.create_session.return_value = session_response(["evt_1", "evt_2", "evt_3"])
    api_client.notify_file.side_effect = [
        UploadError("notify down"),
        {"next_action": "wait"},
        {"next_action": "wait"},
        {"next_action": "wait"},
        {"next_action": "wait"},
        {"next_action": "video_created:vid_2"},
    ]

    result = make_uploader(FakeTransfer(), []).upload(api_client, recording["video"], {}, {})

    assert result["video_id"] == "vid_2"
    assert result["uploaded_files"][0] == "run.mp4"


# =============================================================================
# SESSION OWNERSHIP TESTS
# =============================================================================


@pytest.fixture
def running_lease():
    """
    Guard whose current lease owns a bound session "sess_running".

    Usage:
        def test_guard(running_lease):
            guard, lease, canceller = running_lease
    """
    guard = UploadSessionGuard()
    canceller = MagicMock()
    lease = guard.acquire()
    handle = SessionHandle.from_response(session_response(["evt_1"], "sess_running"))
    assert guard.bind(lease, handle, canceller)
    return guard, lease, canceller


@pytest.mark.unit
def test_incomplete_bundle_leaves_running_session_alone(recording, api_client, running_lease):
    """
    Test a direct upload whose bundle fails preflight.

    Should:
    - Raise FILE_NOT_FOUND
    - Not revoke the lease of the upload already running
    - Not cancel its session or create a new one
    """
    guard, lease, canceller = running_lease
    recording["main_thumb"].unlink()
    uploader = DirectUploader(guard, FakeTransfer(), sleep=lambda _: None)

    with pytest.raises(UploadError) as exc_info:
        uploader.upload(api_client, recording["video"], {}, {})

    assert exc_info.value.code == ErrorCode.FILE_NOT_FOUND
    assert lease.revoked is False
    canceller.assert_not_called()
    api_client.create_session.assert_not_called()
    assert guard.get_upload_status()["current_session_id"] == "sess_running"


@pytest.mark.unit
def test_invalid_events_json_leaves_running_session_alone(recording, api_client, running_lease):
    guard, lease, canceller = running_lease
    recording["events_json"].write_text("{not json")
    uploader = DirectUploader(guard, FakeTransfer(), sleep=lambda _: None)

    with pytest.raises(UploadError):
        uploader.upload(api_client, recording["video"], {}, {})

    assert lease.revoked is False
    canceller.assert_not_called()


@pytest.mark.unit
def test_cancelled_job_leaves_running_session_alone(recording, api_client, running_lease):
    guard, lease, canceller = running_lease
    token = CancellationToken()
    token.cancel()
    uploader = DirectUploader(guard, FakeTransfer(), sleep=lambda _: None)

    with pytest.raises(UploadCancelledError):
        uploader.upload(api_client, recording["video"], {}, {}, cancel_token=token)

    assert lease.revoked is False
    canceller.assert_not_called()


@pytest.mark.integration
def test_second_upload_supersedes_run_between_files(recording):
    """
    Test two direct uploads on one provider, the second starting while the
    first waits for its video notification.

    Should:
    - Fail the first run with SESSION_CONFLICT
    - Cancel the first session exactly once
    - Let the second run reach video_created
    """
    guard = UploadSessionGuard()
    transfer = FakeTransfer()
    between_files = threading.Event()
    resume_first = threading.Event()

    first_client = MagicMock()
    first_client.create_session.return_value = session_response(
        ["evt_1", "evt_2", "evt_3"], "sess_1",
    )

    def first_notify(session_id, payload):
        between_files.set()
        resume_first.wait(5)
        return {"next_action": "wait", "session_status": "uploading"}

    first_client.notify_file.side_effect = first_notify

    second_client = MagicMock()
    second_client.create_session.return_value = session_response(
        ["evt_1", "evt_2", "evt_3"], "sess_2",
    )
    second_client.notify_file.return_value = {"next_action": "video_created:vid_2"}
    second_client.player_url.side_effect = lambda video_id: f"https://player/watch?v={video_id}"

    first_errors = []

    def run_first():
        try:
            DirectUploader(guard, transfer, sleep=lambda _: None).upload(
                first_client, recording["video"], {}, {},
            )
        except UploadError as e:
            first_errors.append(e)

    first_thread = threading.Thread(target=run_first)
    first_thread.start()
    assert between_files.wait(5)

    try:
        result = DirectUploader(guard, transfer, sleep=lambda _: None).upload(
            second_client, recording["video"], {}, {},
        )
    finally:
        resume_first.set()
        first_thread.join(timeout=5)

    assert not first_thread.is_alive()
    assert len(first_errors) == 1
    assert first_errors[0].code == ErrorCode.SESSION_CONFLICT

    first_client.cancel_session.assert_called_once_with("sess_1")
    second_client.cancel_session.assert_not_called()

    assert result["video_id"] == "vid_2"
    assert result["session_id"] == "sess_2"
    assert first_client.notify_file.call_count == 1
