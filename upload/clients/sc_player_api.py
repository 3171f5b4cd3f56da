"""
StarCapture Player API Client

Thin REST client for the StarCapture Player companion backend.

All requests authenticate with `Authorization: Bearer <api key>` and
exchange JSON. Non-2xx responses become ApiRequestError carrying the
server's message, its details and the HTTP status code.
"""

import logging
from typing import Any, Dict, Optional

import requests

from config.settings import HTTP_TIMEOUT, SC_PLAYER_BASE_URL
from upload.constants import ErrorCode
from upload.interfaces.provider_interface import ApiRequestError


class SCPlayerApiClient:
    """
    REST client bound to one API key and base URL.

    Usage:
        client = SCPlayerApiClient("scplayer_abc", "https://host/api")
        contexts = client.get_posting_contexts()
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = SC_PLAYER_BASE_URL,
        timeout: int = HTTP_TIMEOUT,
        http: Optional[requests.Session] = None,
    ):
        """
        Initialize API client.

        Args:
            api_key: StarCapture Player API key (scplayer_...)
            base_url: Backend base URL, with or without the /api suffix
            timeout: Request timeout in seconds
            http: requests session (shared between clients, mocked in tests)
        """
        self.logger = logging.getLogger(__name__)
        self.api_key = api_key
        self.base_url = base_url or SC_PLAYER_BASE_URL
        self.timeout = timeout
        self.http = http or requests.Session()

    @staticmethod
    def build_url(base_url: str, endpoint: str) -> str:
        """
        Join base URL and endpoint, making sure the path goes through /api.

        Example:
            build_url("https://host/api", "/health") -> "https://host/api/health"
            build_url("https://host/", "health")     -> "https://host/api/health"
            build_url("https://host", "/health")     -> "https://host/api/health"
        """
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint

        if base_url.endswith("/api"):
            return base_url + endpoint
        if base_url.endswith("/"):
            return base_url + "api" + endpoint
        return base_url + "/api" + endpoint

    def player_url(self, video_id: str) -> str:
        """Public watch page for a video"""
        player_base = self.base_url.replace("/api", "").replace(":8443", ":3000")
        return f"{player_base}/watch?v={video_id}"

    # =========================================================================
    # REQUEST HELPER
    # =========================================================================

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make an authenticated JSON request.

        Returns:
            Parsed JSON body ({} for an empty 2xx body)

        Raises:
            ApiRequestError: On transport failure, non-2xx status or a
                body that is not JSON
        """
        url = self.build_url(self.base_url, endpoint)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        self.logger.debug(f"{method} {url}")

        try:
            response = self.http.request(
                method,
                url,
                headers=headers,
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ApiRequestError(
                f"Request to {endpoint} failed: {e}",
                code=ErrorCode.REMOTE_TRANSFER_FAILED,
            ) from e

        status = response.status_code
        text = response.text or ""

        if status >= 400:
            self.logger.error(f"HTTP error {status} for {method} {endpoint}: {text}")

        if not text.strip() and 200 <= status < 300:
            return {}

        try:
            parsed = response.json()
        except ValueError as e:
            if status >= 400:
                raise ApiRequestError(f"Server error {status}: {text[:200]}", status) from e
            raise ApiRequestError(
                f"Failed to parse response: {e}. Raw response: {text[:200]}",
                status,
            ) from e

        if 200 <= status < 300:
            return parsed

        raise ApiRequestError(self._error_message(parsed, status), status)

    @staticmethod
    def _error_message(parsed: Any, status: int) -> str:
        """'<message> (Details: <details>)' from an error body"""
        error: Dict[str, Any] = {}
        top: Dict[str, Any] = {}
        if isinstance(parsed, dict):
            top = parsed
            if isinstance(parsed.get("error"), dict):
                error = parsed["error"]

        message = error.get("message") or top.get("message") or f"API error: {status}"
        details = error.get("details") or top.get("details") or "No additional details"
        return f"{message} (Details: {details})"

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    def get_upload_limits(self) -> Dict[str, Any]:
        return self.request("/upload/limits")

    def get_posting_contexts(self) -> Dict[str, Any]:
        return self.request("/companion/user/posting-contexts")

    def get_quota(self) -> Dict[str, Any]:
        return self.request("/companion/user/quota")

    def health(self) -> Dict[str, Any]:
        return self.request("/health")

    def create_session(self, session_data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("/companion/upload/session", method="POST", body=session_data)

    def cancel_session(self, session_id: str) -> None:
        self.request(f"/companion/upload/session/{session_id}", method="DELETE")

    def notify_file(self, session_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.request(
            f"/companion/upload/session/{session_id}/notify",
            method="POST",
            body=payload,
        )

    def complete_multipart(self, session_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self.request(
            f"/companion/upload/session/{session_id}/complete",
            method="POST",
            body=payload,
        )

    def index_video(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("/companion/videos", method="POST", body=body)
