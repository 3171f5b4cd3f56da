"""
Direct Upload Session Models

Data classes for the StarCapture Player multi-file upload session: the
local files a session needs, the server's per-file upload plan and the
mapping between the two.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from upload.constants import (
    FILE_TYPE_EVENT_THUMBNAIL,
    SESSION_PROTOCOL_KEYED,
    SESSION_PROTOCOL_POSITIONAL,
    UPLOAD_METHOD_MULTIPART,
    UPLOAD_METHOD_SINGLE,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MultipartPart:
    """One presigned part URL of a server-planned multipart upload"""

    part_number: int
    url: str
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "MultipartPart":
        return cls(
            part_number=int(data["part_number"]),
            url=data["url"],
            headers=data.get("headers") or {},
        )


@dataclass
class SessionFile:
    """
    Server upload plan for one logical file of a session.

    Single uploads carry url/headers; multipart uploads carry
    multipart_upload_id plus the ordered part list.
    """

    file_id: str
    file_type: str
    upload_method: str = UPLOAD_METHOD_SINGLE
    url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    file_key: Optional[str] = None

    multipart_upload_id: Optional[str] = None
    parts: List[MultipartPart] = field(default_factory=list)
    part_size: Optional[int] = None
    total_parts: Optional[int] = None

    @property
    def is_multipart(self) -> bool:
        return self.upload_method == UPLOAD_METHOD_MULTIPART

    @classmethod
    def from_dict(cls, data: dict) -> "SessionFile":
        return cls(
            file_id=data["file_id"],
            file_type=data["file_type"],
            upload_method=data.get("upload_method") or UPLOAD_METHOD_SINGLE,
            url=data.get("url"),
            headers=data.get("headers") or {},
            file_key=data.get("file_key"),
            multipart_upload_id=data.get("multipart_upload_id"),
            parts=[
                MultipartPart.from_dict(part)
                for part in data.get("multipart_parts") or []
            ],
            part_size=data.get("multipart_part_size"),
            total_parts=data.get("multipart_total_parts"),
        )


@dataclass
class SessionHandle:
    """
    A server-side upload session.

    protocol_version selects how event thumbnails are mapped:
    1 = positional (legacy servers), 2 = keyed by file_key.
    """

    session_id: str
    files: List[SessionFile]
    protocol_version: int

    @classmethod
    def from_response(cls, response: Dict[str, Any]) -> "SessionHandle":
        """Build a handle from the POST /companion/upload/session response"""
        files = [SessionFile.from_dict(item) for item in response.get("files") or []]

        version = response.get("protocol_version")
        if version is None:
            has_keys = any(
                f.file_key for f in files if f.file_type == FILE_TYPE_EVENT_THUMBNAIL
            )
            version = SESSION_PROTOCOL_KEYED if has_keys else SESSION_PROTOCOL_POSITIONAL
            if version == SESSION_PROTOCOL_POSITIONAL:
                logger.warning(
                    "Upload session response has no file_key for event thumbnails; "
                    "legacy server, mapping event thumbnails by position",
                )

        return cls(
            session_id=response["session_id"],
            files=files,
            protocol_version=int(version),
        )

    def files_of_type(self, file_type: str) -> List[SessionFile]:
        return [f for f in self.files if f.file_type == file_type]


@dataclass
class RequiredFiles:
    """Local files that a direct upload must send, validated up front"""

    video_path: Path
    json_path: Path
    main_thumb_path: Path
    event_thumbnails: List[Path]
    file_sizes: Dict[str, Any]

    def to_session_sizes(self) -> Dict[str, Any]:
        """file_sizes block of the session creation request"""
        return self.file_sizes


@dataclass
class FileMapping:
    """A local file paired with the server plan it is uploaded against"""

    local_path: Path
    session_file: SessionFile
    size: int = 0

    @property
    def file_type(self) -> str:
        return self.session_file.file_type
