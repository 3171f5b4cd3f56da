#!/usr/bin/env python3
"""
YouTube Authentication Setup Script

Run this ONCE per YouTube channel. It runs the OAuth consent flow in a
browser and registers the resulting tokens as a YouTube upload account.
After this, the upload service refreshes tokens automatically.

Usage:
    python setup_youtube_auth.py --name "My Channel"
    python setup_youtube_auth.py --name "My Channel" --playlist PLxxxx --privacy unlisted

Requirements:
    1. client_secret.json from Google Cloud Console (Desktop app client)
    2. .env file with YOUTUBE_CLIENT_SECRET_PATH (optional, see config/settings.py)
"""

import argparse
import logging
import os
import sys

from config import settings
from upload import UploadError, UploadManager
from upload.auth.oauth_manager import run_initial_auth
from upload.constants import AccountType, YOUTUBE_DEFAULT_PRIVACY

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def validate_client_secret(client_secret_path: str) -> str:
    """Validate client_secret.json exists"""
    if not client_secret_path:
        logger.error("❌ YOUTUBE_CLIENT_SECRET_PATH not set in .env")
        sys.exit(1)

    if not os.path.exists(client_secret_path):
        logger.error(f"❌ client_secret.json not found: {client_secret_path}")
        logger.info("\nTo get client_secret.json:")
        logger.info("1. Go to: https://console.cloud.google.com/apis/credentials")
        logger.info("2. Create OAuth 2.0 Client ID (Desktop app)")
        logger.info("3. Download JSON file")
        logger.info(f"4. Save to: {client_secret_path}")
        sys.exit(1)

    logger.info(f"✅ Found client_secret.json: {client_secret_path}")
    return client_secret_path


def run_authentication(client_secret_path: str, port: int) -> dict:
    """Run OAuth authentication flow"""
    logger.info("\n" + "=" * 60)
    logger.info("Starting YouTube Authentication")
    logger.info("=" * 60)
    logger.info("\nSteps:")
    logger.info("1. Browser will open automatically")
    logger.info("2. Log in to your Google/YouTube account")
    logger.info("3. Grant permissions to the app")
    logger.info(
        "\n⚠️  Make sure to use the SAME Google account that owns the YouTube channel!",
    )

    credentials = run_initial_auth(client_secret_path, port=port)

    if not credentials:
        logger.error("\n" + "=" * 60)
        logger.error("❌ AUTHENTICATION FAILED")
        logger.error("=" * 60)
        logger.error("\nTroubleshooting:")
        logger.error("1. Check client_secret.json is valid")
        logger.error("2. Ensure OAuth consent screen is configured")
        logger.error("3. Check you're using correct Google account")
        sys.exit(1)

    return credentials


def register_account(name: str, credentials: dict, config: dict) -> None:
    """Store the tokens as a YouTube account in the encrypted account store"""
    manager = UploadManager()
    manager.initialize()
    try:
        account = manager.add_account(AccountType.YOUTUBE.value, name, config, credentials)
    except UploadError as e:
        logger.error(f"❌ Failed to register account: {e}")
        sys.exit(1)
    finally:
        manager.shutdown()

    logger.info("\n" + "=" * 60)
    logger.info("✅ AUTHENTICATION SUCCESSFUL!")
    logger.info("=" * 60)
    logger.info(f"\nAccount registered: {account['id']} ({account['name']})")
    logger.info("\nYou can now queue uploads:")
    logger.info(f"  python upload_service.py queue {account['id']} /path/to/video.mp4")


def main():
    """Main setup flow"""
    parser = argparse.ArgumentParser(description="Register a YouTube upload account")
    parser.add_argument("--name", default="YouTube", help="Account display name")
    parser.add_argument(
        "--client-secret",
        default=settings.YOUTUBE_CLIENT_SECRET_PATH,
        help="Path to client_secret.json",
    )
    parser.add_argument("--port", type=int, default=8080, help="Local OAuth callback port")
    parser.add_argument("--privacy", default=YOUTUBE_DEFAULT_PRIVACY)
    parser.add_argument("--playlist", default=None, help="Playlist id for new uploads")
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("YouTube Authentication Setup")
    logger.info("=" * 60)

    logger.info("\n[Step 1/3] Validating client_secret.json...")
    client_secret_path = validate_client_secret(args.client_secret)

    logger.info("\n[Step 2/3] Running authentication flow...")
    credentials = run_authentication(client_secret_path, args.port)

    logger.info("\n[Step 3/3] Registering account...")
    config = {"privacy": args.privacy}
    if args.playlist:
        config["playlist"] = args.playlist
    register_account(args.name, credentials, config)


if __name__ == "__main__":
    main()
