"""
Upload Constants

Centralized configuration for the upload module: provider identifiers, job
states, error codes, protocol limits and defaults.
"""

from enum import Enum

# =============================================================================
# PROVIDERS AND ACCOUNTS
# =============================================================================


class AccountType(Enum):
    """Upload backends an account can target"""

    S3 = "s3"
    YOUTUBE = "youtube"
    SC_PLAYER = "sc-player"


# =============================================================================
# UPLOAD JOB STATUS
# =============================================================================


class JobStatus(Enum):
    """Lifecycle states of an upload job"""

    QUEUED = "queued"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


# =============================================================================
# ERROR CODES
# =============================================================================


class ErrorCode(Enum):
    """Failure classes surfaced by providers and the upload manager"""

    ACCOUNT_NOT_FOUND = "account_not_found"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CREDENTIALS_INVALID = "credentials_invalid"
    FILE_NOT_FOUND = "file_not_found"
    SIZE_LIMIT_EXCEEDED = "size_limit_exceeded"
    SESSION_CONFLICT = "session_conflict"
    REMOTE_TRANSFER_FAILED = "remote_transfer_failed"
    NOTIFICATION_FAILED = "notification_failed"
    S3_ACCOUNT_NOT_FOUND = "s3_account_not_found"
    S3_PROVIDER_UNAVAILABLE = "s3_provider_unavailable"
    AUTH_ERROR = "auth_error"
    VALIDATION_FAILED = "validation_failed"
    CANCELLED = "cancelled"
    UNKNOWN_COMMAND = "unknown_command"
    STORAGE_ERROR = "storage_error"
    FAILED = "failed"


# =============================================================================
# UPLOAD MANAGER DEFAULTS
# =============================================================================

MAX_CONCURRENT_UPLOADS = 3
COMPLETED_HISTORY_LIMIT = 50

# Uploads never start on process start; START_QUEUE is required
START_PAUSED = True
AUTO_PROCESS_QUEUE = False

# S3-then-index progress split: S3 transfer fills 0-80, indexing 80-100
S3_PHASE_PROGRESS_SHARE = 0.8
INDEXING_PROGRESS = 85

# =============================================================================
# S3 CONFIGURATION
# =============================================================================

S3_DEFAULT_REGION = "us-east-1"
S3_DEFAULT_STORAGE_CLASS = "STANDARD"
S3_MULTIPART_THRESHOLD = 5 * 1024 * 1024  # 5 MiB
S3_MULTIPART_CHUNK_SIZE = 5 * 1024 * 1024  # 5 MiB
S3_MULTIPART_CONCURRENCY = 4

# =============================================================================
# YOUTUBE API CONFIGURATION
# =============================================================================

# OAuth 2.0 scopes required for YouTube operations
YOUTUBE_SCOPES = [
    "https://www.googleapis.com/auth/youtube.upload",
    "https://www.googleapis.com/auth/youtube",
]

YOUTUBE_API_SERVICE_NAME = "youtube"
YOUTUBE_API_VERSION = "v3"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Chunk size for resumable uploads (multiple of 256 KB)
UPLOAD_CHUNK_SIZE = 10 * 1024 * 1024  # 10 MB

# Retries for a single resumable chunk on 5xx
YOUTUBE_CHUNK_MAX_RETRIES = 5
YOUTUBE_CHUNK_RETRY_DELAY = 5  # seconds

YOUTUBE_MAX_FILE_SIZE = 128 * 1024 * 1024 * 1024  # 128 GB
YOUTUBE_CATEGORY_GAMING = "20"
YOUTUBE_DEFAULT_PRIVACY = "private"
YOUTUBE_DEFAULT_TAGS = ["Star Citizen", "Gaming"]
YOUTUBE_DEFAULT_TITLE = "StarCapture Video"

# Treat tokens expiring within this window as already expired
TOKEN_EXPIRY_SKEW_SECONDS = 5 * 60
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

# =============================================================================
# STARCAPTURE PLAYER CONFIGURATION
# =============================================================================

SC_PLAYER_API_KEY_PREFIX = "scplayer_"
SC_PLAYER_DEFAULT_PRIVACY = "public"

UPLOAD_METHOD_DIRECT = "direct"
UPLOAD_METHOD_S3_INDEX = "s3-index"
POST_UPLOAD_ACTION_INDEX = "sc-player-index"

LIMITS_CACHE_TTL_SECONDS = 5 * 60

# Used when GET /upload/limits is unavailable
DEFAULT_UPLOAD_LIMITS = {
    "max_file_sizes": {
        "video": 5 * 1024 * 1024 * 1024,  # 5 GB
        "events_json": 100 * 1024 * 1024,  # 100 MB
        "main_thumbnail": 10 * 1024 * 1024,  # 10 MB
        "event_thumbnail": 10 * 1024 * 1024,  # 10 MB
    },
    "multipart_threshold": 5 * 1024 * 1024 * 1024,
    "part_size": 100 * 1024 * 1024,
    "max_parts_per_file": 10000,
}

DEFAULT_PART_SIZE = 100 * 1024 * 1024

# Per-file retry policy for direct uploads
DIRECT_UPLOAD_MAX_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 1.0
RETRY_MAX_DELAY_SECONDS = 10.0

MULTIPART_CONCURRENCY = 4

# Presigned PUT timeout (large files)
PRESIGNED_PUT_TIMEOUT = 300  # seconds

# Progress is capped here until the server confirms the video exists
DIRECT_UPLOAD_PROGRESS_CAP = 95.0

VIDEO_CREATED_PREFIX = "video_created:"

# Session file types
FILE_TYPE_VIDEO = "video"
FILE_TYPE_EVENTS_JSON = "events_json"
FILE_TYPE_MAIN_THUMBNAIL = "main_thumbnail"
FILE_TYPE_EVENT_THUMBNAIL = "event_thumbnail"

CRITICAL_FILE_TYPES = (FILE_TYPE_VIDEO, FILE_TYPE_EVENTS_JSON, FILE_TYPE_MAIN_THUMBNAIL)

UPLOAD_METHOD_MULTIPART = "multipart"
UPLOAD_METHOD_SINGLE = "single"

# Event thumbnail mapping protocol: v1 positional, v2 keyed by file_key
SESSION_PROTOCOL_POSITIONAL = 1
SESSION_PROTOCOL_KEYED = 2

# =============================================================================
# RECORDING SIDECAR FILES
# =============================================================================

MAIN_THUMBNAIL_SUFFIX = "_main_thumb.jpg"
THUMBNAILS_DIR_SUFFIX = "_thumbs"
THUMBNAIL_EXTENSIONS = (".jpg", ".png")
EVENTS_JSON_EXTENSION = ".json"

CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".mkv": "video/x-matroska",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".json": "application/json",
    ".txt": "text/plain",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# =============================================================================
# COMMAND SURFACE
# =============================================================================


class UploadCommand(Enum):
    """Actions accepted by UploadManager.handle_command"""

    ADD_ACCOUNT = "ADD_ACCOUNT"
    UPDATE_ACCOUNT = "UPDATE_ACCOUNT"
    DELETE_ACCOUNT = "DELETE_ACCOUNT"
    LIST_ACCOUNTS = "LIST_ACCOUNTS"
    TEST_ACCOUNT = "TEST_ACCOUNT"
    UPLOAD_FILE = "UPLOAD_FILE"
    CANCEL_UPLOAD = "CANCEL_UPLOAD"
    GET_UPLOAD_STATUS = "GET_UPLOAD_STATUS"
    GET_STATE = "GET_STATE"
    CLEAR_COMPLETED = "CLEAR_COMPLETED"
    REMOVE_FROM_QUEUE = "REMOVE_FROM_QUEUE"
    REMOVE_COMPLETED = "REMOVE_COMPLETED"
    START_QUEUE = "START_QUEUE"
    PAUSE_QUEUE = "PAUSE_QUEUE"
    GET_QUEUE_STATUS = "GET_QUEUE_STATUS"


# =============================================================================
# LIFECYCLE EVENTS
# =============================================================================

EVENT_INITIALIZED = "initialized"
EVENT_PROVIDERS_INITIALIZED = "providers-initialized"
EVENT_ACCOUNT_ADDED = "account-added"
EVENT_ACCOUNT_UPDATED = "account-updated"
EVENT_ACCOUNT_DELETED = "account-deleted"
EVENT_ACCOUNT_TESTED = "account-tested"
EVENT_UPLOAD_QUEUED = "upload-queued"
EVENT_UPLOAD_STARTED = "upload-started"
EVENT_UPLOAD_PROGRESS = "upload-progress"
EVENT_UPLOAD_COMPLETED = "upload-completed"
EVENT_UPLOAD_FAILED = "upload-failed"
EVENT_UPLOAD_CANCELLED = "upload-cancelled"
EVENT_STATE_CHANGED = "state-changed"
EVENT_QUEUE_STARTED = "queue-started"
EVENT_QUEUE_PAUSED = "queue-paused"
EVENT_LOG = "log"
EVENT_ERROR = "error"
