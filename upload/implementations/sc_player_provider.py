"""
StarCapture Player Provider Implementation

Concrete implementation of ProviderInterface for the StarCapture Player
companion backend.

Two upload methods (metadata["upload_method"]):
- "direct":   multi-file session straight to StarCapture Player storage
              (accounts with a storage quota)
- "s3-index": returns an S3IndexDelegation; the upload manager pushes the
              file to an S3 account and then calls index_video()
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from config.settings import SC_PLAYER_BASE_URL
from upload.clients.sc_player_api import SCPlayerApiClient
from upload.constants import (
    DEFAULT_UPLOAD_LIMITS,
    DIRECT_UPLOAD_MAX_RETRIES,
    LIMITS_CACHE_TTL_SECONDS,
    MULTIPART_CONCURRENCY,
    POST_UPLOAD_ACTION_INDEX,
    SC_PLAYER_API_KEY_PREFIX,
    SC_PLAYER_DEFAULT_PRIVACY,
    UPLOAD_METHOD_DIRECT,
    UPLOAD_METHOD_S3_INDEX,
    AccountType,
    ErrorCode,
)
from upload.interfaces.provider_interface import (
    CancellationToken,
    ConnectionTestResult,
    DetailedAccount,
    ProgressCallback,
    ProviderInterface,
    S3IndexDelegation,
    UploadError,
    UploadOutcome,
)
from upload.sc_player.direct_upload import DirectUploader
from upload.sc_player.session_guard import UploadSessionGuard
from upload.sc_player.transfer import PresignedTransfer
from upload.utils.file_utils import format_bytes


class SCPlayerProvider(ProviderInterface):
    """
    Upload provider for StarCapture Player.

    Credentials: api_key (scplayer_...)
    Config: base_url

    One instance owns one UploadSessionGuard: at most one direct-upload
    session is open at a time.
    """

    provider_type = AccountType.SC_PLAYER
    display_name = "StarCapture Player"

    def __init__(
        self,
        default_base_url: str = SC_PLAYER_BASE_URL,
        http: Optional[requests.Session] = None,
        transfer: Optional[PresignedTransfer] = None,
        limits_cache_ttl: float = LIMITS_CACHE_TTL_SECONDS,
        max_retries: int = DIRECT_UPLOAD_MAX_RETRIES,
        multipart_concurrency: int = MULTIPART_CONCURRENCY,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize StarCapture Player provider.

        Args:
            default_base_url: Used when an account has no base_url
            http: requests session for API calls (mocked in tests)
            transfer: Presigned URL transfer (mocked in tests)
            limits_cache_ttl: Seconds to reuse the server's upload limits
            max_retries: Retries per file of a direct upload
            multipart_concurrency: Parts uploaded at the same time
            sleep: Used for retry backoff
            clock: Monotonic time source for the limits cache
        """
        self.logger = logging.getLogger(__name__)
        self.default_base_url = default_base_url
        self.http = http or requests.Session()
        self.limits_cache_ttl = limits_cache_ttl
        self.clock = clock

        self.session_guard = UploadSessionGuard()
        self.direct_uploader = DirectUploader(
            self.session_guard,
            transfer or PresignedTransfer(concurrency=multipart_concurrency),
            max_retries=max_retries,
            sleep=sleep,
        )

        self._limits_cache: Optional[Dict[str, Any]] = None
        self._limits_cache_time: Optional[float] = None
        self._limits_lock = threading.Lock()

        self.logger.info("StarCapture Player Provider initialized")

    def client(self, credentials: Dict[str, Any], config: Dict[str, Any]) -> SCPlayerApiClient:
        """API client for one account"""
        return SCPlayerApiClient(
            credentials.get("api_key") or "",
            config.get("base_url") or self.default_base_url,
            http=self.http,
        )

    # =========================================================================
    # ACCOUNT CHECKS
    # =========================================================================

    def check_auth(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> DetailedAccount:
        return self.validate_account(credentials, config)

    def validate_account(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> DetailedAccount:
        """
        Validate the API key and collect characters, organizations and quota.

        Falls back to the /health probe when the detailed endpoints fail.

        Raises:
            UploadError: CREDENTIALS_INVALID for a malformed or rejected key
        """
        api_key = credentials.get("api_key")
        if not api_key:
            raise UploadError("API key is required", code=ErrorCode.CREDENTIALS_INVALID)

        if not api_key.startswith(SC_PLAYER_API_KEY_PREFIX):
            raise UploadError(
                f'Invalid API key format. Must start with "{SC_PLAYER_API_KEY_PREFIX}"',
                code=ErrorCode.CREDENTIALS_INVALID,
            )

        client = self.client(credentials, config)

        try:
            contexts_response = client.get_posting_contexts()
        except UploadError as e:
            self.logger.error(f"❌ Validation failed: {e}")
            return self._health_fallback(client, e)

        quota: Dict[str, Any] = {}
        try:
            quota = client.get_quota() or {}
        except UploadError as e:
            self.logger.info(f"Could not fetch quota info: {e}")

        return DetailedAccount(
            valid=True,
            account_info=self._summarize_account(contexts_response, quota),
        )

    def _health_fallback(
        self,
        client: SCPlayerApiClient,
        error: UploadError,
    ) -> DetailedAccount:
        self.logger.info("Trying fallback health check...")
        try:
            client.health()
        except UploadError as health_error:
            self.logger.error(f"Health check also failed: {health_error}")
            raise UploadError(
                f"Authentication failed: {error}",
                code=ErrorCode.CREDENTIALS_INVALID,
            ) from error

        return DetailedAccount(
            valid=True,
            account_info={
                "username": "Connected",
                "character_count": 0,
                "organization_count": 0,
                "storage_used_bytes": 0,
                "storage_quota_bytes": 0,
                "has_storage": False,
                "error": "Could not fetch detailed information",
            },
        )

    def _summarize_account(
        self,
        contexts_response: Dict[str, Any],
        quota: Dict[str, Any],
    ) -> Dict[str, Any]:
        if not isinstance(contexts_response, dict):
            contexts_response = {}
        data = contexts_response.get("data") or {}
        contexts = (
            (data.get("availableContexts") if isinstance(data, dict) else None)
            or contexts_response.get("availableContexts")
            or []
        )

        characters = [ctx["character"] for ctx in contexts if ctx.get("character")]
        memberships: List[Dict[str, Any]] = []
        for character in characters:
            memberships.extend(character.get("organizations") or [])

        org_ids = set()
        for membership in memberships:
            org_id = (membership.get("organization") or {}).get("id") or membership.get(
                "organizationId",
            )
            if org_id:
                org_ids.add(org_id)

        used = quota.get("used_bytes") or 0
        total = quota.get("quota_bytes") or 0

        username = "API Key User"
        if characters and characters[0].get("handle"):
            username = characters[0]["handle"]

        self.logger.info(
            f"Account {username}: {len(characters)} characters, "
            f"{len(org_ids)} organizations, storage {used}/{total}",
        )

        return {
            "username": username,
            "email": None,
            "account_tier": "api",
            "character_count": len(characters),
            "organization_count": len(org_ids),
            "storage_used_bytes": used,
            "storage_quota_bytes": total,
            "has_storage": bool(quota.get("has_quota")),
            "storage_used_formatted": format_bytes(used),
            "storage_quota_formatted": format_bytes(total),
            "storage_percentage": round(used / total * 100) if total > 0 else 0,
            "characters": characters,
            "organizations": [m.get("organization") or m for m in memberships],
        }

    def test_connection(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> ConnectionTestResult:
        """Validate the account and render a short summary"""
        try:
            result = self.validate_account(credentials, config)
        except UploadError as e:
            return ConnectionTestResult(False, f"Connection failed: {e}")

        info = result.account_info
        if not result.valid or not info:
            return ConnectionTestResult(False, "Connection failed: Invalid response")

        characters = info.get("character_count", 0)
        organizations = info.get("organization_count", 0)
        message = (
            f"Connected successfully!\n"
            f"Found {characters} character{'' if characters == 1 else 's'}, "
            f"{organizations} organization{'' if organizations == 1 else 's'}"
        )
        if info.get("has_storage"):
            message += (
                f"\nStorage: {info['storage_used_formatted']} / "
                f"{info['storage_quota_formatted']} ({info['storage_percentage']}% used)"
            )
        else:
            message += "\nNo storage quota (indexing only)"

        return ConnectionTestResult(True, message, details=info)

    def get_posting_contexts(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> Any:
        """Characters and organizations the key may post as"""
        response = self.client(credentials, config).get_posting_contexts()
        return response.get("data") or response or []

    # =========================================================================
    # UPLOAD LIMITS
    # =========================================================================

    def get_upload_limits(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Server upload limits, cached for limits_cache_ttl seconds.

        Falls back to built-in defaults when the endpoint is unavailable.
        """
        with self._limits_lock:
            if (
                self._limits_cache is not None
                and self._limits_cache_time is not None
                and self.clock() - self._limits_cache_time < self.limits_cache_ttl
            ):
                self.logger.debug("Using cached upload limits")
                return self._limits_cache

        self.logger.info("Fetching upload limits from server")
        try:
            limits = self.client(credentials, config).get_upload_limits()
        except UploadError as e:
            self.logger.warning(f"Failed to fetch upload limits, using defaults: {e}")
            return DEFAULT_UPLOAD_LIMITS

        with self._limits_lock:
            self._limits_cache = limits
            self._limits_cache_time = self.clock()
        return limits

    # =========================================================================
    # INDEXING
    # =========================================================================

    def index_video(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
        video_data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Index a video that is already stored on S3.

        Args:
            video_data: title, description, s3_video_path, privacy,
                character_id, organization_id, metadata, and optional
                s3_json_path / s3_main_thumb_path

        Returns:
            {success, video_id, share_url, view_url, message}
        """
        body: Dict[str, Any] = {
            "title": video_data.get("title"),
            "description": video_data.get("description") or "",
            "s3VideoPath": video_data.get("s3_video_path"),
            "privacy": video_data.get("privacy") or SC_PLAYER_DEFAULT_PRIVACY,
            "characterId": video_data.get("character_id"),
            "metadata": video_data.get("metadata") or {},
        }
        if video_data.get("s3_json_path"):
            body["s3JsonPath"] = video_data["s3_json_path"]
        if video_data.get("s3_main_thumb_path"):
            body["s3MainThumbPath"] = video_data["s3_main_thumb_path"]
        if video_data.get("organization_id"):
            body["organizationId"] = video_data["organization_id"]

        client = self.client(credentials, config)
        response = client.index_video(body)
        self.logger.debug(f"Index video API response: {response}")

        data = response.get("data") or {}
        video_id = (
            (data.get("video") or {}).get("id")
            or data.get("id")
            or (response.get("video") or {}).get("id")
        )
        share_url = data.get("shareUrl") or response.get("shareUrl")

        view_url = share_url
        if not view_url and video_id:
            view_url = client.player_url(video_id)

        self.logger.info(f"✅ Video indexed: {video_id}")
        return {
            "success": True,
            "video_id": video_id,
            "share_url": share_url,
            "view_url": view_url,
            "message": (
                f"Video indexed successfully with ID: {video_id}"
                if video_id else "Video indexed successfully"
            ),
        }

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
    ) -> UploadOutcome:
        """Dispatch on metadata["upload_method"]"""
        metadata = metadata or {}

        if not metadata.get("character_id"):
            raise UploadError(
                "Character ID is required for SC Player upload",
                code=ErrorCode.VALIDATION_FAILED,
            )

        method = metadata.get("upload_method")

        if method == UPLOAD_METHOD_DIRECT:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            limits = self.get_upload_limits(credentials, config)
            return self.direct_uploader.upload(
                self.client(credentials, config),
                file_path,
                metadata,
                limits,
                on_progress=on_progress,
                cancel_token=cancel_token,
            )

        if method == UPLOAD_METHOD_S3_INDEX:
            if not metadata.get("s3_account_id"):
                raise UploadError(
                    "S3 account ID is required for S3 + indexing upload method",
                    code=ErrorCode.VALIDATION_FAILED,
                )
            return self._s3_index_delegation(credentials, config, metadata)

        raise UploadError(
            f"Unknown upload method: {method}",
            code=ErrorCode.VALIDATION_FAILED,
        )

    def _s3_index_delegation(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> S3IndexDelegation:
        """Ask the manager to upload to S3 first, then index here"""
        return S3IndexDelegation(
            s3_account_id=metadata["s3_account_id"],
            post_upload_action=POST_UPLOAD_ACTION_INDEX,
            index_data={
                "credentials": credentials,
                "config": config,
                "title": metadata.get("title"),
                "description": metadata.get("description"),
                "character_id": metadata.get("character_id"),
                "organization_id": metadata.get("organization_id"),
                "privacy": metadata.get("privacy") or SC_PLAYER_DEFAULT_PRIVACY,
                "include_metadata": metadata.get("include_metadata"),
                "include_thumbnails": metadata.get("include_thumbnails"),
                "main_thumbnail_path": metadata.get("main_thumbnail_path"),
            },
            message="Upload will be processed via S3 with automatic StarCapture Player indexing",
        )

    # =========================================================================
    # SESSION CONTROL
    # =========================================================================

    def get_upload_status(self) -> Dict[str, Any]:
        """{upload_in_progress, current_session_id}"""
        return self.session_guard.get_upload_status()

    def force_cancel(
        self,
        credentials: Dict[str, Any],
        config: Dict[str, Any],
    ) -> None:
        """Abort the running direct upload and cancel its server session"""
        self.logger.info("Force canceling current upload")
        self.session_guard.force_cancel()
        self.logger.info("Upload canceled and state reset")
