"""
Authentication Package

OAuth 2.0 token handling for YouTube accounts.
"""

from upload.auth.oauth_manager import OAuthManager, run_initial_auth

__all__ = [
    "OAuthManager",
    "run_initial_auth",
]
