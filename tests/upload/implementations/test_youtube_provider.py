"""
YouTube Provider Tests

Tests for the YouTube provider with a mocked API client showing:
- Resumable upload progress and result
- Chunk retry on 5xx and auth errors on 401
- Refreshed credentials handed back to the manager
- Playlist insertion being non-fatal

To run these tests:
    pytest tests/upload/implementations/test_youtube_provider.py -v
"""

from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from upload.constants import ErrorCode
from upload.implementations.youtube_provider import YouTubeProvider
from upload.interfaces.provider_interface import (
    CancellationToken,
    DetailedAccount,
    UploadCancelledError,
    UploadError,
)

CREDENTIALS = {"access_token": "token", "refresh_token": "refresh", "expires_at": 0}


def http_error(status: int, reason: str) -> HttpError:
    resp = httplib2.Response({"status": status})
    resp.reason = reason
    return HttpError(resp, b"")


def chunk_status(fraction: float, sent: int):
    status = MagicMock()
    status.progress.return_value = fraction
    status.resumable_progress = sent
    return status


@pytest.fixture
def oauth_manager():
    manager = MagicMock()
    manager.ensure_valid_token.side_effect = lambda credentials: credentials
    return manager


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def provider(oauth_manager, service):
    sleeps = []
    provider = YouTubeProvider(
        oauth_manager=oauth_manager,
        service_builder=lambda credentials: service,
        sleep=sleeps.append,
    )
    provider.sleeps = sleeps
    return provider


def insert_request(service):
    return service.videos.return_value.insert.return_value


# =============================================================================
# AUTH TESTS
# =============================================================================


@pytest.mark.unit
def test_check_auth_requires_access_token(provider):
    with pytest.raises(UploadError) as exc_info:
        provider.check_auth({}, {})

    assert exc_info.value.code == ErrorCode.CREDENTIALS_INVALID


@pytest.mark.unit
def test_check_auth_returns_detailed_account(provider):
    result = provider.check_auth(CREDENTIALS, {})

    assert isinstance(result, DetailedAccount)
    assert result.valid is True


@pytest.mark.unit
def test_refresh_credentials_forces_expiry(provider, oauth_manager):
    assert provider.refresh_credentials({"access_token": "t"}) is None

    provider.refresh_credentials({"access_token": "t", "refresh_token": "r", "expires_at": 9e12})

    forced = oauth_manager.ensure_valid_token.call_args.args[0]
    assert forced["expires_at"] == 0


@pytest.mark.unit
def test_test_connection_names_channel(provider, service):
    service.channels.return_value.list.return_value.execute.return_value = {
        "items": [{"snippet": {"title": "Bounty Hunts"}}],
    }

    result = provider.test_connection(CREDENTIALS, {})

    assert result.success is True
    assert result.message == "Connected to YouTube channel: Bounty Hunts"


# =============================================================================
# UPLOAD TESTS
# =============================================================================


@pytest.mark.unit
def test_upload_reports_progress_and_returns_video(provider, service, video_file):
    """
    Test a two-chunk resumable upload.

    Should:
    - Report chunk progress then 100%
    - Build the snippet with gaming category and account privacy
    - Return id and watch URL
    """
    insert_request(service).next_chunk.side_effect = [
        (chunk_status(0.5, 512), None),
        (None, {"id": "vid123"}),
    ]
    progress = []

    result = provider.upload(
        CREDENTIALS,
        {"privacy": "unlisted"},
        video_file,
        {"title": "Bounty run"},
        on_progress=progress.append,
    )

    assert result == {
        "success": True,
        "video_id": "vid123",
        "url": "https://youtube.com/watch?v=vid123",
    }
    assert [update.percentage for update in progress] == [50.0, 100.0]

    body = service.videos.return_value.insert.call_args.kwargs["body"]
    assert body["snippet"]["title"] == "Bounty run"
    assert body["snippet"]["categoryId"] == "20"
    assert body["status"]["privacyStatus"] == "unlisted"


@pytest.mark.unit
def test_upload_retries_server_errors(provider, service, video_file):
    insert_request(service).next_chunk.side_effect = [
        http_error(503, "Service Unavailable"),
        (None, {"id": "vid123"}),
    ]

    result = provider.upload(CREDENTIALS, {}, video_file, {})

    assert result["video_id"] == "vid123"
    assert provider.sleeps == [5]


@pytest.mark.unit
def test_upload_unauthorized_maps_to_auth_error(provider, service, video_file):
    """The message keeps the status so the manager can detect a 401"""
    insert_request(service).next_chunk.side_effect = http_error(401, "Unauthorized")

    with pytest.raises(UploadError) as exc_info:
        provider.upload(CREDENTIALS, {}, video_file, {})

    assert str(exc_info.value) == "Upload failed (401): Unauthorized"
    assert exc_info.value.code == ErrorCode.AUTH_ERROR


@pytest.mark.unit
def test_upload_returns_refreshed_credentials(provider, oauth_manager, service, video_file):
    refreshed = dict(CREDENTIALS, access_token="fresh")
    oauth_manager.ensure_valid_token.side_effect = None
    oauth_manager.ensure_valid_token.return_value = refreshed
    insert_request(service).next_chunk.return_value = (None, {"id": "vid123"})

    result = provider.upload(CREDENTIALS, {}, video_file, {})

    assert result["updated_credentials"] == refreshed


@pytest.mark.unit
def test_playlist_failure_does_not_fail_upload(provider, service, video_file):
    insert_request(service).next_chunk.return_value = (None, {"id": "vid123"})
    playlist_insert = service.playlistItems.return_value.insert.return_value
    playlist_insert.execute.side_effect = http_error(404, "playlistNotFound")

    result = provider.upload(CREDENTIALS, {"playlist": "PL1"}, video_file, {})

    assert result["success"] is True
    assert playlist_insert.execute.called


@pytest.mark.unit
def test_upload_cancelled_between_chunks(provider, service, video_file):
    token = CancellationToken()

    def next_chunk():
        token.cancel()
        return chunk_status(0.1, 100), None

    insert_request(service).next_chunk.side_effect = next_chunk

    with pytest.raises(UploadCancelledError):
        provider.upload(CREDENTIALS, {}, video_file, {}, cancel_token=token)
