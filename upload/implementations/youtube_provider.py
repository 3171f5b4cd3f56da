"""
YouTube Provider Implementation

Concrete implementation of ProviderInterface for YouTube Data API v3.
Handles video uploads with resumable upload protocol.
"""

import logging
import os
import time
from typing import Any, Callable, Dict, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from upload.auth.oauth_manager import OAuthManager
from upload.constants import (
    UPLOAD_CHUNK_SIZE,
    YOUTUBE_API_SERVICE_NAME,
    YOUTUBE_API_VERSION,
    YOUTUBE_CATEGORY_GAMING,
    YOUTUBE_CHUNK_MAX_RETRIES,
    YOUTUBE_CHUNK_RETRY_DELAY,
    YOUTUBE_DEFAULT_PRIVACY,
    YOUTUBE_DEFAULT_TAGS,
    YOUTUBE_DEFAULT_TITLE,
    YOUTUBE_MAX_FILE_SIZE,
    AccountType,
    ErrorCode,
)
from upload.interfaces.provider_interface import (
    CancellationToken,
    ConnectionTestResult,
    DetailedAccount,
    ProgressCallback,
    ProgressUpdate,
    ProviderInterface,
    UploadError,
)

ServiceBuilder = Callable[[Dict[str, Any]], Any]


class YouTubeProvider(ProviderInterface):
    """
    YouTube video uploader using YouTube Data API v3.

    Features:
    - Resumable uploads in chunks, with progress per chunk
    - Proactive token refresh before the upload starts
    - Optional playlist addition (failure does not fail the upload)
    - Refreshed credentials handed back in the result for persistence
    """

    provider_type = AccountType.YOUTUBE
    display_name = "YouTube"

    def __init__(
        self,
        oauth_manager: Optional[OAuthManager] = None,
        service_builder: Optional[ServiceBuilder] = None,
        chunk_size: int = UPLOAD_CHUNK_SIZE,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize YouTube provider.

        Args:
            oauth_manager: Token expiry/refresh handling
            service_builder: Builds the API client from a credentials map
                (injected in tests)
            chunk_size: Resumable upload chunk size in bytes
            sleep: Used between chunk retries
        """
        self.logger = logging.getLogger(__name__)
        self.oauth_manager = oauth_manager or OAuthManager()
        self.service_builder = service_builder or self._build_service
        self.chunk_size = chunk_size
        self.sleep = sleep

        self.logger.info("YouTube Provider initialized")

    def _build_service(self, credentials: Dict[str, Any]):
        """Build an authenticated YouTube API client"""
        return build(
            YOUTUBE_API_SERVICE_NAME,
            YOUTUBE_API_VERSION,
            credentials=OAuthManager.to_google_credentials(credentials),
            cache_discovery=False,
        )

    # =========================================================================
    # ACCOUNT CHECKS
    # =========================================================================

    def check_auth(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> DetailedAccount:
        """
        Validate account credentials.

        The upload scope cannot read anything back, so a present access
        token is accepted here; the upload itself is the real check.
        """
        if not credentials.get("access_token"):
            raise UploadError("Missing access token", code=ErrorCode.CREDENTIALS_INVALID)

        return DetailedAccount(
            valid=True,
            account_info={"id": "youtube-user", "name": "YouTube Account", "email": ""},
        )

    def test_connection(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> ConnectionTestResult:
        """Test connection by listing the authenticated channel"""
        try:
            self.check_auth(credentials, config)
            valid_credentials = self.oauth_manager.ensure_valid_token(credentials)
            service = self.service_builder(valid_credentials)
            response = service.channels().list(part="snippet", mine=True).execute()
        except UploadError as e:
            return ConnectionTestResult(False, f"Connection failed: {e}")
        except HttpError as e:
            self.logger.error(f"❌ YouTube API connection test failed: {e}")
            return ConnectionTestResult(False, f"Connection failed: {e.reason}")

        items = response.get("items") or []
        title = items[0]["snippet"]["title"] if items else "unknown channel"
        self.logger.info("✅ YouTube API connection test successful")
        return ConnectionTestResult(
            True,
            f"Connected to YouTube channel: {title}",
            details={"channel_count": len(items)},
        )

    def refresh_credentials(self, credentials: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Force-expire the stored token and refresh it"""
        if not credentials.get("refresh_token"):
            return None
        expired = dict(credentials, expires_at=0)
        return self.oauth_manager.ensure_valid_token(expired)

    # =========================================================================
    # UPLOAD
    # =========================================================================

    def upload(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
        file_path: str,
        metadata: Dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        Upload video to YouTube.

        Upload happens in chunks defined by chunk_size; cancellation is
        checked between chunks.

        Returns:
            {success, video_id, url[, updated_credentials]}
        """
        cancel_token = cancel_token or CancellationToken()

        if not os.path.exists(file_path):
            raise UploadError(f"File not found: {file_path}", code=ErrorCode.FILE_NOT_FOUND)

        file_size = os.path.getsize(file_path)
        if file_size > YOUTUBE_MAX_FILE_SIZE:
            raise UploadError(
                "File exceeds YouTube's maximum size of 128GB",
                code=ErrorCode.SIZE_LIMIT_EXCEEDED,
            )

        cancel_token.raise_if_cancelled()

        valid_credentials = self.oauth_manager.ensure_valid_token(credentials)
        credentials_updated = (
            valid_credentials.get("access_token") != credentials.get("access_token")
        )
        if credentials_updated:
            self.logger.info("Using refreshed access token for upload")

        body = {
            "snippet": {
                "title": metadata.get("title") or YOUTUBE_DEFAULT_TITLE,
                "description": metadata.get("description") or "",
                "tags": metadata.get("tags") or YOUTUBE_DEFAULT_TAGS,
                "categoryId": metadata.get("category_id") or YOUTUBE_CATEGORY_GAMING,
            },
            "status": {
                "privacyStatus": (
                    metadata.get("privacy")
                    or config.get("privacy")
                    or YOUTUBE_DEFAULT_PRIVACY
                ),
                "selfDeclaredMadeForKids": False,
            },
        }
        playlist_id = metadata.get("playlist") or config.get("playlist")

        self.logger.info(f"Starting upload: {file_path} ({file_size} bytes)")

        try:
            service = self.service_builder(valid_credentials)
            media = MediaFileUpload(
                file_path,
                mimetype="video/*",
                chunksize=self.chunk_size,
                resumable=True,
            )
            request = service.videos().insert(
                part="snippet,status",
                body=body,
                media_body=media,
            )
            video_id = self._execute_upload(request, file_size, on_progress, cancel_token)

        except HttpError as e:
            raise UploadError(
                f"YouTube API error {e.resp.status}: {e.reason}",
                code=self._parse_http_error(e),
            ) from e

        if playlist_id:
            self._add_to_playlist(service, video_id, playlist_id)

        self.logger.info(f"✅ Upload successful: {video_id} ({file_size} bytes)")

        result: Dict[str, Any] = {
            "success": True,
            "video_id": video_id,
            "url": f"https://youtube.com/watch?v={video_id}",
        }
        if credentials_updated:
            result["updated_credentials"] = valid_credentials
        return result

    def _execute_upload(
        self,
        request,
        file_size: int,
        on_progress: Optional[ProgressCallback],
        cancel_token: CancellationToken,
    ) -> str:
        """
        Execute resumable upload with progress tracking.

        Returns:
            Video ID of uploaded video

        Raises:
            UploadError: If upload fails, is cancelled or returns no id
        """
        response = None
        retries = 0
        last_logged = 0

        while response is None:
            cancel_token.raise_if_cancelled()

            try:
                status, response = request.next_chunk()
            except HttpError as e:
                if e.resp.status in (500, 502, 503, 504) and retries < YOUTUBE_CHUNK_MAX_RETRIES:
                    retries += 1
                    self.logger.warning(
                        f"Retryable error {e.resp.status}, retrying "
                        f"({retries}/{YOUTUBE_CHUNK_MAX_RETRIES})...",
                    )
                    self.sleep(YOUTUBE_CHUNK_RETRY_DELAY)
                    continue
                raise UploadError(
                    f"Upload failed ({e.resp.status}): {e.reason}",
                    code=self._parse_http_error(e),
                ) from e

            if status:
                retries = 0
                percentage = status.progress() * 100
                if on_progress:
                    on_progress(
                        ProgressUpdate(
                            percentage=percentage,
                            bytes_uploaded=status.resumable_progress,
                            total_bytes=file_size,
                        ),
                    )
                if percentage >= last_logged + 10:
                    self.logger.info(f"Upload progress: {int(percentage)}%")
                    last_logged = int(percentage)

        if on_progress:
            on_progress(ProgressUpdate(100.0, file_size, file_size))

        if response and "id" in response:
            return response["id"]
        raise UploadError("Upload completed but no video ID returned")

    def _add_to_playlist(self, service, video_id: str, playlist_id: str) -> None:
        """
        Add video to playlist.

        Note: Logs warning if fails but doesn't raise - non-critical
        """
        try:
            service.playlistItems().insert(
                part="snippet",
                body={
                    "snippet": {
                        "playlistId": playlist_id,
                        "resourceId": {
                            "kind": "youtube#video",
                            "videoId": video_id,
                        },
                    },
                },
            ).execute()

            self.logger.info(f"Added video {video_id} to playlist {playlist_id}")

        except HttpError as e:
            self.logger.warning(f"Failed to add video to playlist: {e.reason}")

    def _parse_http_error(self, error: HttpError) -> ErrorCode:
        """Map an API HTTP error to an error code"""
        if error.resp.status in (401, 403):
            return ErrorCode.AUTH_ERROR
        if error.resp.status >= 500:
            return ErrorCode.REMOTE_TRANSFER_FAILED
        return ErrorCode.FAILED
