"""
Presigned Transfer Tests

Tests for single PUTs and server-completed multipart uploads.

To run these tests:
    pytest tests/upload/sc_player/test_transfer.py -v
"""

import threading
from unittest.mock import MagicMock

import pytest

from upload.interfaces.provider_interface import (
    ApiRequestError,
    CancellationToken,
    RemoteTransferError,
    UploadCancelledError,
    UploadError,
)
from upload.models.session import SessionFile
from upload.sc_player.transfer import PresignedTransfer, get_part_size


class FakeStorage:
    """Stands in for requests.Session.put, draining the streamed body"""

    def __init__(self, failing_urls=()):
        self.bodies = {}
        self.headers = {}
        self.failing_urls = set(failing_urls)
        self._lock = threading.Lock()

    def put(self, url, data, headers, timeout):
        chunks = []
        while True:
            chunk = data.read(8192)
            if not chunk:
                break
            chunks.append(chunk)

        with self._lock:
            self.bodies[url] = b"".join(chunks)
            self.headers[url] = headers

        response = MagicMock()
        response.status_code = 500 if url in self.failing_urls else 200
        response.text = "boom"
        response.headers = {"ETag": f'"etag-{url[-1]}"'}
        return response


def multipart_file(part_count, part_size):
    return SessionFile.from_dict(
        {
            "file_id": "f_video",
            "file_type": "video",
            "upload_method": "multipart",
            "file_key": "sessions/s/video.mp4",
            "multipart_upload_id": "mpu_1",
            "multipart_part_size": part_size,
            "multipart_parts": [
                {"part_number": n, "url": f"https://put/part/{n}"}
                for n in range(part_count, 0, -1)
            ],
        },
    )


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def transfer(storage):
    http = MagicMock()
    http.put.side_effect = storage.put
    return PresignedTransfer(http=http, concurrency=2)


# =============================================================================
# PART SIZE TESTS
# =============================================================================


@pytest.mark.unit
@pytest.mark.parametrize(
    "part_number, total_size, part_size, total_parts, expected",
    [
        (1, 250, 100, None, 100),
        (3, 250, 100, None, 50),
        (2, 200, 100, None, 100),
        (2, 150, 100, 2, 50),
    ],
)
def test_get_part_size(part_number, total_size, part_size, total_parts, expected):
    assert get_part_size(part_number, total_size, part_size, total_parts) == expected


@pytest.mark.unit
def test_get_part_size_defaults_to_100_mb():
    mb = 1024 * 1024
    assert get_part_size(1, 250 * mb) == 100 * mb
    assert get_part_size(3, 250 * mb) == 50 * mb


# =============================================================================
# SINGLE PUT TESTS
# =============================================================================


@pytest.mark.unit
def test_put_file_streams_whole_file(transfer, storage, make_video):
    path = make_video("single.mp4", size=200_000)
    sent = []

    transfer.put_file(
        "https://put/single",
        path,
        headers={"Content-Type": "video/mp4"},
        on_bytes=sent.append,
    )

    assert len(storage.bodies["https://put/single"]) == 200_000
    assert storage.headers["https://put/single"] == {"Content-Type": "video/mp4"}
    assert sum(sent) == 200_000


@pytest.mark.unit
def test_put_file_error_status(make_video):
    storage = FakeStorage(failing_urls={"https://put/x"})
    http = MagicMock()
    http.put.side_effect = storage.put

    with pytest.raises(RemoteTransferError) as exc_info:
        PresignedTransfer(http=http).put_file("https://put/x", make_video())

    assert exc_info.value.status_code == 500
    assert str(exc_info.value) == "Upload failed with status 500: boom"


@pytest.mark.unit
def test_put_file_cancelled_while_streaming(transfer, make_video):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(UploadCancelledError):
        transfer.put_file("https://put/c", make_video(), cancel_token=token)


# =============================================================================
# MULTIPART TESTS
# =============================================================================


@pytest.mark.unit
def test_multipart_uploads_byte_ranges_and_completes_sorted(transfer, storage, tmp_path):
    """
    Test a 3-part upload of 250 bytes with 100-byte parts.

    Should:
    - PUT the right byte range to each part URL
    - Complete through the server with parts sorted by number
    """
    path = tmp_path / "video.mp4"
    content = bytes(range(250))
    path.write_bytes(content)
    client = MagicMock()

    result = transfer.upload_multipart(client, "sess_1", multipart_file(3, 100), str(path))

    assert result == {"multipart_upload": True, "total_parts": 3}
    assert storage.bodies["https://put/part/1"] == content[:100]
    assert storage.bodies["https://put/part/2"] == content[100:200]
    assert storage.bodies["https://put/part/3"] == content[200:]

    session_id, payload = client.complete_multipart.call_args.args
    assert session_id == "sess_1"
    assert payload["file_id"] == "f_video"
    assert [p["part_number"] for p in payload["parts"]] == [1, 2, 3]
    assert payload["parts"][0]["etag"] == '"etag-1"'


@pytest.mark.unit
def test_multipart_requires_upload_plan(transfer, video_file):
    session_file = SessionFile.from_dict(
        {"file_id": "f", "file_type": "video", "upload_method": "multipart"},
    )

    with pytest.raises(UploadError, match="Missing multipart_upload_id"):
        transfer.upload_multipart(MagicMock(), "sess_1", session_file, video_file)


@pytest.mark.unit
def test_failed_part_skips_completion(tmp_path):
    path = tmp_path / "video.mp4"
    path.write_bytes(b"x" * 250)
    storage = FakeStorage(failing_urls={"https://put/part/2"})
    http = MagicMock()
    http.put.side_effect = storage.put
    client = MagicMock()

    with pytest.raises(RemoteTransferError, match="Part upload failed with status 500"):
        PresignedTransfer(http=http).upload_multipart(
            client, "sess_1", multipart_file(3, 100), str(path),
        )

    client.complete_multipart.assert_not_called()


@pytest.mark.unit
def test_completion_failure_wraps_api_error(transfer, tmp_path):
    path = tmp_path / "video.mp4"
    path.write_bytes(b"x" * 150)
    client = MagicMock()
    client.complete_multipart.side_effect = ApiRequestError("Bad parts", 400)

    with pytest.raises(ApiRequestError) as exc_info:
        transfer.upload_multipart(client, "sess_1", multipart_file(2, 100), str(path))

    assert str(exc_info.value) == "Failed to complete multipart upload via server: Bad parts"
    assert exc_info.value.status_code == 400
