"""
Upload Configuration Handler

Manages YAML configuration file for upload settings.
Provides defaults and validation.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from config import settings
from upload.constants import (
    AUTO_PROCESS_QUEUE,
    COMPLETED_HISTORY_LIMIT,
    DIRECT_UPLOAD_MAX_RETRIES,
    LIMITS_CACHE_TTL_SECONDS,
    MAX_CONCURRENT_UPLOADS,
    MULTIPART_CONCURRENCY,
    START_PAUSED,
)


class UploadConfig:
    """
    Upload configuration with YAML file support.

    Reads from config/upload.yaml if it exists,
    otherwise uses defaults from constants.py.

    Usage:
        config = UploadConfig()
        data_dir = config.data_dir
        max_uploads = config.max_concurrent_uploads
    """

    DEFAULT_CONFIG_PATH = settings.UPLOAD_CONFIG_PATH

    def __init__(self, config_path: Optional[Path] = None, save_default: bool = True):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (None = use default)
            save_default: Write a default file when none exists
        """
        self.logger = logging.getLogger(__name__)
        self.config_path = Path(config_path or self.DEFAULT_CONFIG_PATH)
        self.save_default = save_default

        # Load configuration (defaults + file overrides)
        self._config = self._load_config()

        self.logger.info(f"Upload config loaded from {self.config_path}")

    def _get_defaults(self) -> Dict[str, Any]:
        """Get default configuration values from constants and settings"""
        return {
            # Paths
            "data_dir": str(settings.UPLOAD_DATA_DIR),

            # Queue
            "max_concurrent_uploads": MAX_CONCURRENT_UPLOADS,
            "completed_history_limit": COMPLETED_HISTORY_LIMIT,
            "start_paused": START_PAUSED,
            "auto_process_queue": AUTO_PROCESS_QUEUE,

            # StarCapture Player
            "sc_player_base_url": settings.SC_PLAYER_BASE_URL,
            "limits_cache_ttl_seconds": LIMITS_CACHE_TTL_SECONDS,
            "direct_upload_max_retries": DIRECT_UPLOAD_MAX_RETRIES,
            "multipart_concurrency": MULTIPART_CONCURRENCY,
        }

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file or use defaults"""
        config = self._get_defaults()

        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    file_config = yaml.safe_load(f) or {}

                # File overrides defaults
                config.update(file_config)

                self.logger.info(f"Loaded config from {self.config_path}")

            except Exception as e:
                self.logger.warning(
                    f"Failed to load config from {self.config_path}: {e}. "
                    f"Using defaults."
                )
        elif self.save_default:
            self.logger.info(
                f"Config file not found at {self.config_path}. "
                f"Using defaults. Creating default config file..."
            )
            self._save_config(config)

        self._validate_config(config)

        return config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration values"""
        if config["max_concurrent_uploads"] < 1:
            raise ValueError("max_concurrent_uploads must be at least 1")

        if config["completed_history_limit"] < 1:
            raise ValueError("completed_history_limit must be at least 1")

        if config["direct_upload_max_retries"] < 0:
            raise ValueError("direct_upload_max_retries cannot be negative")

        if config["multipart_concurrency"] < 1:
            raise ValueError("multipart_concurrency must be at least 1")

        if config["limits_cache_ttl_seconds"] < 0:
            raise ValueError("limits_cache_ttl_seconds cannot be negative")

        if config["auto_process_queue"] and config["start_paused"]:
            self.logger.warning(
                "auto_process_queue is enabled but start_paused is true. "
                "Queued uploads wait for START_QUEUE."
            )

    def _save_config(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Save configuration to YAML file"""
        if config is None:
            config = self._config

        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, "w") as f:
                yaml.dump(
                    config,
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    indent=2,
                )

            self.logger.info(f"Config saved to {self.config_path}")

        except Exception as e:
            self.logger.error(f"Failed to save config: {e}")

    # =========================================================================
    # PROPERTY ACCESSORS
    # =========================================================================

    @property
    def data_dir(self) -> Path:
        """Directory holding accounts and queue state"""
        return Path(self._config["data_dir"]).expanduser()

    @property
    def max_concurrent_uploads(self) -> int:
        return self._config["max_concurrent_uploads"]

    @property
    def completed_history_limit(self) -> int:
        """How many finished jobs to keep in history"""
        return self._config["completed_history_limit"]

    @property
    def start_paused(self) -> bool:
        return self._config["start_paused"]

    @property
    def auto_process_queue(self) -> bool:
        """Whether enqueueing starts uploads while the queue is running"""
        return self._config["auto_process_queue"]

    @property
    def sc_player_base_url(self) -> str:
        return self._config["sc_player_base_url"]

    @property
    def limits_cache_ttl_seconds(self) -> int:
        return self._config["limits_cache_ttl_seconds"]

    @property
    def direct_upload_max_retries(self) -> int:
        """Retries per file after the first attempt"""
        return self._config["direct_upload_max_retries"]

    @property
    def multipart_concurrency(self) -> int:
        return self._config["multipart_concurrency"]

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def set(self, key: str, value: Any, save: bool = True) -> None:
        """
        Set configuration value.

        Args:
            key: Configuration key
            value: New value
            save: If True, save to file immediately
        """
        self._config[key] = value

        if save:
            self._save_config()

    def to_dict(self) -> Dict[str, Any]:
        return self._config.copy()

    def __repr__(self) -> str:
        return f"UploadConfig(path={self.config_path})"
