"""
File Utilities

Helpers for recording sidecar files, content types, object keys and
human-readable sizes.
"""

import math
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from upload.constants import (
    CONTENT_TYPES,
    DEFAULT_CONTENT_TYPE,
    EVENTS_JSON_EXTENSION,
    MAIN_THUMBNAIL_SUFFIX,
    THUMBNAIL_EXTENSIONS,
    THUMBNAILS_DIR_SUFFIX,
)

PathLike = Union[str, Path]


def get_content_type(file_name: PathLike) -> str:
    """Content type by extension, application/octet-stream when unknown"""
    return CONTENT_TYPES.get(Path(file_name).suffix.lower(), DEFAULT_CONTENT_TYPE)


# =============================================================================
# RECORDING SIDECARS
# =============================================================================
# A recording "clip.mp4" comes with:
#   clip.json                events JSON
#   clip_main_thumb.jpg      main thumbnail
#   clip_thumbs/<event>.jpg  one thumbnail per event


def events_json_path(video_path: PathLike) -> Path:
    video_path = Path(video_path)
    return video_path.with_suffix(EVENTS_JSON_EXTENSION)


def main_thumbnail_path(video_path: PathLike) -> Path:
    video_path = Path(video_path)
    return video_path.parent / f"{video_path.stem}{MAIN_THUMBNAIL_SUFFIX}"


def thumbnails_dir(video_path: PathLike) -> Path:
    video_path = Path(video_path)
    return video_path.parent / f"{video_path.stem}{THUMBNAILS_DIR_SUFFIX}"


def list_event_thumbnails(video_path: PathLike) -> List[Path]:
    """Event thumbnail images sorted by filename (empty if no directory)"""
    directory = thumbnails_dir(video_path)
    if not directory.is_dir():
        return []
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix.lower() in THUMBNAIL_EXTENSIONS
    )


# =============================================================================
# OBJECT KEYS
# =============================================================================


def upload_timestamp(now: Optional[datetime] = None) -> str:
    """ISO timestamp safe for object keys: 2025-01-31T12-00-00-000Z"""
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"
    return stamp


def build_object_key(
    file_name: str,
    prefix: str = "",
    timestamp: Optional[str] = None,
) -> str:
    """
    Object key for an upload.

    With a timestamp the name becomes "<timestamp>_<file_name>" so repeated
    uploads of the same file never collide.
    """
    name = f"{timestamp}_{file_name}" if timestamp else file_name
    prefix = prefix.strip("/")
    return f"{prefix}/{name}" if prefix else name


def sibling_key(key: str, new_suffix: str) -> str:
    """Replace the extension of an object key: a/b.mp4 -> a/b.json"""
    head, _, name = key.rpartition("/")
    stem = name.rsplit(".", 1)[0] if "." in name else name
    new_name = f"{stem}{new_suffix}"
    return f"{head}/{new_name}" if head else new_name


def join_url(base: str, key: str) -> str:
    """Concatenate a public base URL and an object key"""
    return f"{base.rstrip('/')}/{key.lstrip('/')}"


# =============================================================================
# FORMATTING
# =============================================================================


def format_bytes(size: int, decimals: int = 2) -> str:
    """
    Human-readable size.

    Example:
        format_bytes(1536) -> "1.5 KB"
    """
    if size <= 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB"]
    index = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    value = round(size / (1024 ** index), max(decimals, 0))
    # Drop trailing zeros: 1.50 -> 1.5, 2.00 -> 2
    text = f"{value:.{max(decimals, 0)}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {units[index]}"
