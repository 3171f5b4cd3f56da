"""
Presigned URL Transfer

Sends local files to the presigned URLs of a direct-upload session:
- single: one PUT of the whole file
- multipart: parts PUT in batches of 4, completed through the StarCapture
  server (never against the storage backend directly)

Bodies are streamed through a reader that reports bytes and checks the
cancel token on every read.
"""

import logging
import math
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, BinaryIO, Callable, Dict, List, Optional

import requests

from upload.clients.sc_player_api import SCPlayerApiClient
from upload.constants import (
    DEFAULT_PART_SIZE,
    MULTIPART_CONCURRENCY,
    PRESIGNED_PUT_TIMEOUT,
    ErrorCode,
)
from upload.interfaces.provider_interface import (
    ApiRequestError,
    CancellationToken,
    RemoteTransferError,
    UploadError,
)
from upload.models.session import MultipartPart, SessionFile

# Called with the number of bytes just sent
BytesCallback = Callable[[int], None]

READ_BLOCK_SIZE = 64 * 1024


class ProgressReader:
    """
    File-like body for requests: reads `length` bytes from `offset`.

    requests sizes the body through __len__ and sends it by calling read()
    until it returns b"".
    """

    def __init__(
        self,
        handle: BinaryIO,
        offset: int,
        length: int,
        on_bytes: Optional[BytesCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self._handle = handle
        self._remaining = length
        self._length = length
        self._on_bytes = on_bytes
        self._cancel_token = cancel_token
        self._handle.seek(offset)

    def __len__(self) -> int:
        return self._length

    def read(self, size: int = -1) -> bytes:
        if self._cancel_token is not None:
            self._cancel_token.raise_if_cancelled()

        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining

        chunk = self._handle.read(min(size, READ_BLOCK_SIZE))
        self._remaining -= len(chunk)
        if chunk and self._on_bytes:
            self._on_bytes(len(chunk))
        return chunk


def get_part_size(
    part_number: int,
    total_size: int,
    part_size: Optional[int] = None,
    total_parts: Optional[int] = None,
) -> int:
    """
    Size of one part; every part is part_size except a shorter last part.

    Example:
        get_part_size(3, 250, part_size=100) -> 50
    """
    part_size = part_size or DEFAULT_PART_SIZE
    num_parts = total_parts or math.ceil(total_size / part_size)

    if part_number == num_parts:
        return total_size - (num_parts - 1) * part_size
    return part_size


class PresignedTransfer:
    """
    Uploads one session file to its presigned URL(s).

    One instance is shared by all runs of a provider; it holds no
    per-upload state.
    """

    def __init__(
        self,
        http: Optional[requests.Session] = None,
        concurrency: int = MULTIPART_CONCURRENCY,
        timeout: int = PRESIGNED_PUT_TIMEOUT,
    ):
        """
        Args:
            http: requests session for the PUTs (mocked in tests)
            concurrency: Parts uploaded at the same time
            timeout: Per-request timeout in seconds
        """
        self.logger = logging.getLogger(__name__)
        self.http = http or requests.Session()
        self.concurrency = concurrency
        self.timeout = timeout

    # =========================================================================
    # SINGLE UPLOAD
    # =========================================================================

    def put_file(
        self,
        url: str,
        file_path: str,
        headers: Optional[Dict[str, str]] = None,
        on_bytes: Optional[BytesCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        """
        PUT a whole file to a presigned URL with the server's headers.

        Raises:
            RemoteTransferError: On a non-2xx response
            requests.RequestException: On transport failure
        """
        file_name = os.path.basename(file_path)
        file_size = os.path.getsize(file_path)
        self.logger.debug(f"[{file_name}] Starting upload to presigned URL")

        with open(file_path, "rb") as handle:
            body = ProgressReader(handle, 0, file_size, on_bytes, cancel_token)
            response = self.http.put(
                url,
                data=body,
                headers=headers or {},
                timeout=self.timeout,
            )

        if not 200 <= response.status_code < 300:
            self.logger.error(f"[{file_name}] File upload failed: {response.status_code}")
            raise RemoteTransferError(
                f"Upload failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        self.logger.debug(f"[{file_name}] File upload successful: {response.status_code}")

    # =========================================================================
    # MULTIPART UPLOAD
    # =========================================================================

    def upload_multipart(
        self,
        client: SCPlayerApiClient,
        session_id: str,
        session_file: SessionFile,
        file_path: str,
        on_bytes: Optional[BytesCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        Upload all parts, then complete the upload through the server.

        Returns:
            {"multipart_upload": True, "total_parts": n}

        Raises:
            UploadError: Invalid plan, failed part or failed completion
        """
        cancel_token = cancel_token or CancellationToken()

        if not session_file.multipart_upload_id:
            raise UploadError("Missing multipart_upload_id for multipart upload")
        if not session_file.file_key:
            raise UploadError("Missing file_key for multipart upload")
        if not session_file.parts:
            raise UploadError("Invalid or empty multipart_parts array for multipart upload")

        parts = session_file.parts
        file_size = os.path.getsize(file_path)
        self.logger.info(
            f"Starting multipart upload - {len(parts)} parts "
            f"(key={session_file.file_key}, upload id={session_file.multipart_upload_id})",
        )

        completed: List[Dict[str, Any]] = []
        with ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix="MultipartPart",
        ) as executor:
            for start in range(0, len(parts), self.concurrency):
                cancel_token.raise_if_cancelled()

                batch = parts[start:start + self.concurrency]
                self.logger.debug(
                    f"Uploading part batch {start // self.concurrency + 1} "
                    f"(parts {start + 1}-{start + len(batch)} of {len(parts)})",
                )
                futures = [
                    executor.submit(
                        self.upload_part,
                        part, session_file, file_path, file_size, on_bytes, cancel_token,
                    )
                    for part in batch
                ]
                # Every part of the batch settles before the first error propagates
                errors = [f.exception() for f in futures]
                for error in errors:
                    if error is not None:
                        raise error
                completed.extend(f.result() for f in futures)

        completed.sort(key=lambda p: p["part_number"])
        self.logger.info(f"All {len(completed)} parts uploaded successfully")

        try:
            client.complete_multipart(
                session_id,
                {"file_id": session_file.file_id, "parts": completed},
            )
        except ApiRequestError as e:
            raise ApiRequestError(
                f"Failed to complete multipart upload via server: {e}",
                status_code=e.status_code,
                code=ErrorCode.REMOTE_TRANSFER_FAILED,
            ) from e

        self.logger.info("Multipart upload completed via server")
        return {"multipart_upload": True, "total_parts": len(completed)}

    def upload_part(
        self,
        part: MultipartPart,
        session_file: SessionFile,
        file_path: str,
        file_size: int,
        on_bytes: Optional[BytesCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        PUT one byte range of the file.

        Returns:
            {"part_number": n, "etag": <ETag response header>}
        """
        nominal_size = session_file.part_size or DEFAULT_PART_SIZE
        length = get_part_size(
            part.part_number,
            file_size,
            session_file.part_size,
            session_file.total_parts,
        )
        offset = (part.part_number - 1) * nominal_size

        with open(file_path, "rb") as handle:
            body = ProgressReader(handle, offset, length, on_bytes, cancel_token)
            response = self.http.put(
                part.url,
                data=body,
                headers=part.headers,
                timeout=self.timeout,
            )

        if not 200 <= response.status_code < 300:
            self.logger.error(f"Part {part.part_number} upload failed: {response.status_code}")
            raise RemoteTransferError(
                f"Part upload failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        etag = response.headers.get("ETag")
        self.logger.debug(f"Part {part.part_number} uploaded successfully, ETag: {etag}")
        return {"part_number": part.part_number, "etag": etag}


class FileProgress:
    """Thread-safe byte counter for one file attempt"""

    def __init__(self, on_change: Callable[[int], None]):
        self._lock = threading.Lock()
        self._bytes = 0
        self._on_change = on_change

    def reset(self) -> None:
        with self._lock:
            self._bytes = 0
        self._on_change(0)

    def add(self, count: int) -> None:
        with self._lock:
            self._bytes += count
            total = self._bytes
        self._on_change(total)
