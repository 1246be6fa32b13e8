"""
FeedRelay Configuration System
=============================

Configuration management with environment variables and Pydantic models.
Environment variables override Field defaults with clear precedence.

Nested sections use ``__`` as delimiter, e.g.::

    FEEDRELAY_MISSKEY__HOST=misskey.example
    FEEDRELAY_MISSKEY__AUTH_TOKEN=...
    FEEDRELAY_FEEDS__URLS='["https://rsshub.app/twitter/user/example"]'
"""

from pathlib import Path
from typing import List, Optional, Any
from enum import Enum

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from ..recovery.retry_logic import RetryStrategy
from ..utils.exceptions import ConfigurationError, ErrorCode


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Visibility(str, Enum):
    """Misskey note visibility levels."""
    PUBLIC = "public"
    HOME = "home"
    FOLLOWERS = "followers"
    SPECIFIED = "specified"


class DedupKey(str, Enum):
    """Which entry field decides whether an entry was already published."""
    GUID = "guid"
    TIMESTAMP = "timestamp"


class MediaMatchStrategy(str, Enum):
    """How an uploaded drive file is located again."""
    HASH = "hash"      # MD5 of the downloaded bytes
    URL = "url"        # File name derived from the source URL
    TAG = "tag"        # Unique comment attached at upload time


class MisskeySettings(BaseModel):
    """Remote Misskey instance configuration."""
    host: str = Field(..., description="Misskey host, e.g. misskey.io")
    auth_token: str = Field(..., description="Misskey API access token")
    visibility: Visibility = Field(default=Visibility.PUBLIC, description="Visibility of created notes")
    max_text_length: int = Field(default=3000, ge=1, le=100000, description="Truncate note text beyond this length")

    @field_validator('host')
    @classmethod
    def normalize_host(cls, v):
        """Strip scheme and trailing slashes from the host."""
        if not v or not isinstance(v, str):
            raise ValueError("Misskey host is required")
        host = v.strip()
        for scheme in ("https://", "http://"):
            if host.lower().startswith(scheme):
                host = host[len(scheme):]
        host = host.rstrip("/")
        if not host:
            raise ValueError("Misskey host is required")
        return host

    @field_validator('auth_token')
    @classmethod
    def validate_token(cls, v):
        if not v or not v.strip():
            raise ValueError("Misskey auth token is required")
        return v.strip()


class FeedSettings(BaseModel):
    """Feed polling and change-detection configuration."""
    urls: List[str] = Field(default_factory=list, description="Feed URLs polled every tick, in order")
    dedup_key: DedupKey = Field(default=DedupKey.GUID, description="Dedup strategy: guid or timestamp")
    prime_on_start: bool = Field(
        default=False,
        description="Record the newest entry seen at startup as baseline instead of publishing it",
    )
    rewrite_quotes: bool = Field(default=True, description="Rewrite RSSHub quote blocks into a readable marker")
    quote_marker: str = Field(default="\n**🔁 Quote:**", description="Replacement for RSSHub quote blocks")

    @field_validator('urls', mode='before')
    @classmethod
    def split_urls(cls, v):
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v


class MediaSettings(BaseModel):
    """Media upload and resolve policy."""
    match_strategy: MediaMatchStrategy = Field(
        default=MediaMatchStrategy.HASH, description="How uploaded files are located in the drive"
    )
    resolve_max_attempts: int = Field(
        default=2, ge=1, le=10, description="Drive lookups before a media item counts as missing"
    )
    resolve_backoff_seconds: float = Field(
        default=3.0, ge=0.0, le=120.0, description="Base delay between drive lookups"
    )
    backoff_strategy: RetryStrategy = Field(
        default=RetryStrategy.FIXED_DELAY, description="Delay growth between drive lookups"
    )
    not_found_sentinels: List[str] = Field(
        default_factory=lambda: ["", "0"],
        description="File ids that mean 'not visible yet' rather than a real file",
    )
    force_upload: bool = Field(default=False, description="Ask the drive to re-ingest identical files")
    tag_lookup_limit: int = Field(default=20, ge=1, le=100, description="Recent drive files scanned by the tag strategy")


class SchedulerSettings(BaseModel):
    """Polling cadence."""
    poll_interval_seconds: int = Field(default=300, ge=10, le=86400, description="Seconds between pipeline passes")
    run_on_start: bool = Field(default=False, description="Run one pass immediately at startup")


class LimitsSettings(BaseModel):
    """Network limits."""
    request_timeout: int = Field(default=30, ge=5, le=300, description="Per-request timeout in seconds")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default="logs/feedrelay.log", description="Log file path")
    max_file_size_mb: int = Field(default=10, ge=1, le=100, description="Max log file size in MB")
    backup_count: int = Field(default=5, ge=1, le=20, description="Number of log backup files")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    console_logging: bool = Field(default=True, description="Enable console logging")


class FeedRelaySettings(BaseSettings):
    """Main application settings."""

    misskey: MisskeySettings
    feeds: FeedSettings = Field(default_factory=FeedSettings)
    media: MediaSettings = Field(default_factory=MediaSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    limits: LimitsSettings = Field(default_factory=LimitsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Application metadata
    app_name: str = Field(default="FeedRelay", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "FEEDRELAY_",
    }

    def validate_configuration(self) -> None:
        """Validate complete configuration."""
        errors = []
        error_code = ErrorCode.CONFIG_INVALID

        if not self.feeds.urls:
            errors.append("No feed URLs configured (FEEDRELAY_FEEDS__URLS)")
            error_code = ErrorCode.CONFIG_MISSING

        if self.logging.file_path:
            try:
                log_path = Path(self.logging.file_path)
                log_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid log file path: {e}")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}",
                error_code=error_code
            )

    @property
    def api_base_url(self) -> str:
        return f"https://{self.misskey.host}/api"

    def get_effective_log_level(self) -> str:
        """Get effective log level considering debug mode."""
        if self.debug:
            return "DEBUG"
        return self.logging.level.value


def load_settings(**overrides: Any) -> FeedRelaySettings:
    """Load settings from environment variables and defaults.

    Environment variables override Pydantic Field defaults.

    Returns:
        Loaded and validated settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    # Load environment variables from .env file
    from dotenv import load_dotenv
    load_dotenv()

    try:
        settings = FeedRelaySettings(**overrides)
        settings.validate_configuration()
        return settings

    except ConfigurationError:
        raise
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid settings: {e}",
            error_code=ErrorCode.CONFIG_PARSE_ERROR
        ) from e
    except Exception as e:
        raise ConfigurationError(
            f"Failed to initialize settings: {e}",
            error_code=ErrorCode.CONFIG_INVALID
        ) from e


# Global settings instance
_settings: Optional[FeedRelaySettings] = None


def get_settings(reload: bool = False) -> FeedRelaySettings:
    """Get global settings instance (singleton pattern).

    Args:
        reload: Force reload of settings

    Returns:
        Global settings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = load_settings()

    return _settings
