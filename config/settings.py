"""
Central Configuration File

Environment-level settings for the upload service. This is the single source
of truth for paths and endpoints; tunables that users edit live in
config/upload.yaml (see upload/config.py).

Guidelines:
- Secrets (API keys, credentials, encryption passphrases) belong in .env, NOT here
- Import these settings in modules: from config.settings import UPLOAD_DATA_DIR
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# =============================================================================
# STORAGE LOCATIONS
# =============================================================================

# Where accounts.encrypted, accounts.key and upload-state.json live
UPLOAD_DATA_DIR = Path(
    os.getenv("UPLOAD_DATA_DIR", str(Path.home() / ".starcapture")),
).expanduser()

# YAML file with user-editable upload tunables
UPLOAD_CONFIG_PATH = Path(os.getenv("UPLOAD_CONFIG_PATH", "config/upload.yaml"))

ACCOUNTS_FILE_NAME = "accounts.encrypted"
ACCOUNTS_KEY_FILE_NAME = "accounts.key"
UPLOAD_STATE_FILE_NAME = "upload-state.json"

# =============================================================================
# REMOTE SERVICES
# =============================================================================

SC_PLAYER_BASE_URL = os.getenv(
    "SC_PLAYER_BASE_URL",
    "https://api.starcapture.video/api",
)

# OAuth proxy used to refresh YouTube tokens when no client secret is stored
YOUTUBE_TOKEN_REFRESH_URL = os.getenv(
    "YOUTUBE_TOKEN_REFRESH_URL",
    "https://auth.sc-recorder.video/auth/refresh",
)

HTTP_TIMEOUT = int(os.getenv("HTTP_TIMEOUT", "30"))  # seconds

# =============================================================================
# LOGGING
# =============================================================================

LOG_DIR = os.getenv("LOG_DIR", "/var/log/starcapture")
LOG_SERVICE_FILE = "upload-service.log"

# =============================================================================
# SECRETS (loaded from .env)
# =============================================================================
# IMPORTANT: These should NEVER be committed to version control!

# Optional passphrase for the account store. When unset a random key is
# generated into UPLOAD_DATA_DIR/accounts.key on first use.
ACCOUNTS_ENCRYPTION_KEY = os.getenv("ACCOUNTS_ENCRYPTION_KEY", "")

# client_secret.json used by setup_youtube_auth.py
YOUTUBE_CLIENT_SECRET_PATH = os.getenv(
    "YOUTUBE_CLIENT_SECRET_PATH",
    "credentials/client_secret.json",
)
