"""
OAuth Manager

Handles Google OAuth 2.0 tokens for YouTube accounts.

Tokens live in the account's credentials map, not in a token file:
    access_token, refresh_token, expires_at (epoch seconds),
    client_id / client_secret (optional), token_type, scope

Flow:
1. Initial setup: setup_youtube_auth.py runs the installed-app flow once and
   registers the tokens as a YouTube account
2. Runtime: ensure_valid_token() refreshes before an upload when the access
   token expires within five minutes
3. Refresh goes straight to Google when the account carries a client id and
   secret, otherwise through the OAuth refresh proxy
"""

import logging
import time
from datetime import timezone
from typing import Any, Callable, Dict, Optional

import requests
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from config.settings import HTTP_TIMEOUT, YOUTUBE_TOKEN_REFRESH_URL
from upload.constants import (
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    GOOGLE_TOKEN_URI,
    TOKEN_EXPIRY_SKEW_SECONDS,
    YOUTUBE_SCOPES,
    ErrorCode,
)
from upload.interfaces.provider_interface import UploadError


class OAuthManager:
    """
    Manages YouTube OAuth tokens stored on an account.

    This class:
    - Decides whether an access token is (about to be) expired
    - Refreshes tokens via google-auth or the refresh proxy
    - Builds google Credentials objects for the API client
    """

    def __init__(
        self,
        refresh_url: str = YOUTUBE_TOKEN_REFRESH_URL,
        timeout: int = HTTP_TIMEOUT,
        http: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize OAuth manager.

        Args:
            refresh_url: OAuth proxy endpoint used without a client secret
            timeout: HTTP timeout in seconds
            http: requests session (injected in tests)
            clock: Time source returning epoch seconds
        """
        self.logger = logging.getLogger(__name__)
        self.refresh_url = refresh_url
        self.timeout = timeout
        self.http = http or requests.Session()
        self.clock = clock

    def is_token_expired(self, credentials: Dict[str, Any]) -> bool:
        """
        Check if the access token is expired or expires within 5 minutes.

        A token without expires_at is treated as expired so it gets refreshed.
        """
        expires_at = credentials.get("expires_at")
        if not expires_at:
            self.logger.info("No token expiry time found, assuming expired")
            return True

        expired = float(expires_at) <= self.clock() + TOKEN_EXPIRY_SKEW_SECONDS
        if expired:
            self.logger.info("Access token expired or about to expire")
        return expired

    def ensure_valid_token(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        """
        Get credentials with a usable access token.

        Refreshes when needed. A failed refresh is logged and the original
        credentials are returned, so the upload itself reports the auth error.

        Returns:
            New credentials dict if refreshed, else the same dict
        """
        if not credentials.get("refresh_token"):
            self.logger.debug("No refresh token available")
            return credentials

        if not self.is_token_expired(credentials):
            return credentials

        self.logger.info("Access token expired, refreshing...")
        try:
            refreshed = self.refresh(credentials)
        except UploadError as e:
            self.logger.error(f"Failed to refresh token: {e}")
            return credentials

        self.logger.info("Access token refreshed successfully")
        return refreshed

    def refresh(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        """
        Refresh the access token unconditionally.

        Returns:
            Credentials merged with the new token and expiry

        Raises:
            UploadError: AUTH_ERROR if the refresh fails
        """
        refresh_token = credentials.get("refresh_token")
        if not refresh_token:
            raise UploadError("No refresh token available", code=ErrorCode.AUTH_ERROR)

        if credentials.get("client_id") and credentials.get("client_secret"):
            tokens = self._refresh_with_google(credentials)
        else:
            tokens = self._refresh_with_proxy(refresh_token)

        expires_in = tokens.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS
        updated = dict(credentials)
        updated.update(
            {
                "access_token": tokens["access_token"],
                "expires_in": expires_in,
                "expires_at": tokens.get("expires_at") or self.clock() + expires_in,
                "token_type": tokens.get("token_type") or credentials.get("token_type"),
                "scope": tokens.get("scope") or credentials.get("scope"),
            },
        )
        return updated

    def _refresh_with_google(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        """Refresh directly against Google's token endpoint"""
        google_creds = self.to_google_credentials(credentials)
        try:
            google_creds.refresh(Request())
        except RefreshError as e:
            raise UploadError(
                f"Token refresh failed: {e}",
                code=ErrorCode.AUTH_ERROR,
            ) from e

        tokens: Dict[str, Any] = {"access_token": google_creds.token}
        if google_creds.expiry:
            # google-auth reports expiry as naive UTC
            expiry = google_creds.expiry.replace(tzinfo=timezone.utc)
            tokens["expires_at"] = expiry.timestamp()
            tokens["expires_in"] = max(int(expiry.timestamp() - self.clock()), 0)
        return tokens

    def _refresh_with_proxy(self, refresh_token: str) -> Dict[str, Any]:
        """Refresh through the OAuth proxy that holds the client secret"""
        try:
            response = self.http.post(
                self.refresh_url,
                json={"service": "google", "refresh_token": refresh_token},
                timeout=self.timeout,
            )
            result = response.json()
        except requests.RequestException as e:
            raise UploadError(
                f"Token refresh request failed: {e}",
                code=ErrorCode.AUTH_ERROR,
            ) from e
        except ValueError as e:
            raise UploadError(
                "Failed to parse refresh response",
                code=ErrorCode.AUTH_ERROR,
            ) from e

        if result.get("error") or not result.get("access_token"):
            raise UploadError(
                result.get("message") or "Token refresh failed",
                code=ErrorCode.AUTH_ERROR,
            )

        return {
            "access_token": result["access_token"],
            "expires_in": result.get("expires_in"),
            "token_type": result.get("token_type"),
            "scope": result.get("scope"),
        }

    @staticmethod
    def to_google_credentials(credentials: Dict[str, Any]) -> Credentials:
        """Build google-auth Credentials for the API client"""
        return Credentials(
            token=credentials.get("access_token"),
            refresh_token=credentials.get("refresh_token"),
            token_uri=GOOGLE_TOKEN_URI,
            client_id=credentials.get("client_id"),
            client_secret=credentials.get("client_secret"),
            scopes=YOUTUBE_SCOPES,
        )


def run_initial_auth(
    client_secret_path: str,
    port: int = 8080,
) -> Optional[Dict[str, Any]]:
    """
    Run initial OAuth authentication flow.

    This is a standalone function for the setup script.
    Opens browser for user to grant permissions.

    Args:
        client_secret_path: Path to client_secret.json
        port: Local port for OAuth callback (default: 8080)

    Returns:
        Credentials map for a YouTube account, or None on failure

    Example:
        credentials = run_initial_auth("credentials/client_secret.json")
    """
    logger = logging.getLogger(__name__)

    try:
        flow = InstalledAppFlow.from_client_secrets_file(
            client_secret_path,
            YOUTUBE_SCOPES,
        )

        logger.info(f"Starting OAuth flow on port {port}...")
        logger.info("A browser window will open for authentication")

        google_creds = flow.run_local_server(port=port)

    except Exception as e:
        logger.error(f"Authentication failed: {e}")
        return None

    expires_at = None
    if google_creds.expiry:
        expires_at = google_creds.expiry.replace(tzinfo=timezone.utc).timestamp()

    logger.info("✅ Authentication successful")
    return {
        "access_token": google_creds.token,
        "refresh_token": google_creds.refresh_token,
        "expires_at": expires_at,
        "client_id": google_creds.client_id,
        "client_secret": google_creds.client_secret,
        "scope": " ".join(google_creds.scopes or YOUTUBE_SCOPES),
        "token_type": "Bearer",
    }
