"""
Direct Upload Preflight

A direct upload needs the whole recording bundle next to the video:

    clip.mp4
    clip.json              events JSON
    clip_main_thumb.jpg    main thumbnail
    clip_thumbs/*.jpg|png  at least one event thumbnail

Everything is checked before any network call. Sizes are checked against
the server-advertised limits.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from upload.constants import ErrorCode
from upload.interfaces.provider_interface import UploadError
from upload.models.session import RequiredFiles
from upload.utils.file_utils import (
    events_json_path,
    list_event_thumbnails,
    main_thumbnail_path,
    thumbnails_dir,
)

logger = logging.getLogger(__name__)

_GB = 1024 * 1024 * 1024
_MB = 1024 * 1024


def _missing(message: str) -> UploadError:
    return UploadError(message, code=ErrorCode.FILE_NOT_FOUND)


def _too_large(message: str) -> UploadError:
    return UploadError(message, code=ErrorCode.SIZE_LIMIT_EXCEEDED)


def validate_required_files(
    video_path: str,
    limits: Optional[Dict[str, Any]] = None,
) -> RequiredFiles:
    """
    Check that every file of the bundle exists and is within limits.

    Args:
        video_path: Path to the video
        limits: Upload limits from the server ({"max_file_sizes": {...}})

    Returns:
        RequiredFiles with paths and the file_sizes block for the session

    Raises:
        UploadError: FILE_NOT_FOUND or SIZE_LIMIT_EXCEEDED
    """
    video = Path(video_path)
    json_path = events_json_path(video)
    main_thumb = main_thumbnail_path(video)
    thumbs_dir = thumbnails_dir(video)

    logger.info(f"Validating required files for: {video}")
    logger.debug(f"Expected JSON: {json_path}, main thumb: {main_thumb}, thumbs: {thumbs_dir}")

    if not video.exists():
        raise _missing("Video file not found")

    if not json_path.exists():
        raise _missing(
            "Events JSON not found. This file is required for direct upload to SC Player.",
        )

    if not main_thumb.exists():
        raise _missing(
            "Main thumbnail not found. Generate thumbnails before using direct upload.",
        )

    if not thumbs_dir.is_dir():
        raise _missing(
            "Event thumbnails directory not found. "
            "Generate thumbnails before using direct upload.",
        )

    event_thumbnails = list_event_thumbnails(video)
    if not event_thumbnails:
        raise _missing(
            "No event thumbnails found. Event thumbnails are required for direct upload.",
        )

    event_sizes = [
        {"filename": thumb.name, "size": os.path.getsize(thumb)}
        for thumb in event_thumbnails
    ]

    file_sizes = {
        "video": os.path.getsize(video),
        "events_json": os.path.getsize(json_path),
        "main_thumbnail": os.path.getsize(main_thumb),
        "event_thumbnails": event_sizes,
    }
    validate_file_sizes(file_sizes, (limits or {}).get("max_file_sizes"))

    logger.info(f"Validation passed - found {len(event_thumbnails)} event thumbnails")

    return RequiredFiles(
        video_path=video,
        json_path=json_path,
        main_thumb_path=main_thumb,
        event_thumbnails=event_thumbnails,
        file_sizes=file_sizes,
    )


def validate_file_sizes(
    file_sizes: Dict[str, Any],
    max_file_sizes: Optional[Dict[str, Any]],
) -> None:
    """
    Check a file_sizes block against the server's per-type maxima.

    Raises:
        UploadError: SIZE_LIMIT_EXCEEDED for the first file over its limit
    """
    if not max_file_sizes:
        return

    max_video = max_file_sizes.get("video")
    if max_video and file_sizes["video"] > max_video:
        raise _too_large(
            f"Video file is {file_sizes['video'] / _GB:.2f}GB, which exceeds the "
            f"{max_video / _GB:.2f}GB limit. Please use the video editor to split "
            f"or trim the video.",
        )

    max_json = max_file_sizes.get("events_json")
    if max_json and file_sizes["events_json"] > max_json:
        raise _too_large(
            f"Events JSON is {file_sizes['events_json'] / _MB:.2f}MB, which exceeds "
            f"the {max_json / _MB:.2f}MB limit.",
        )

    max_main = max_file_sizes.get("main_thumbnail")
    if max_main and file_sizes["main_thumbnail"] > max_main:
        raise _too_large(
            f"Main thumbnail is {file_sizes['main_thumbnail'] / _MB:.2f}MB, which "
            f"exceeds the {max_main / _MB:.2f}MB limit. Please regenerate thumbnails.",
        )

    max_event = max_file_sizes.get("event_thumbnail")
    for thumb in file_sizes.get("event_thumbnails") or []:
        if max_event and thumb["size"] > max_event:
            raise _too_large(
                f"Event thumbnail {thumb['filename']} is {thumb['size'] / _MB:.2f}MB, "
                f"which exceeds the {max_event / _MB:.2f}MB limit. "
                f"Please regenerate thumbnails.",
            )

    logger.debug("All file sizes are within limits")
