"""Configuration management for the saveflow article pipeline.

This module provides centralized configuration for all pipeline components.
All settings are loaded from environment variables with sensible defaults.
A Config is built once at process start and passed to every component;
nothing below the CLI reads the environment directly.

Environment Variables:
    LLM:
        LLM_API_KEY: API key for the analysis/digest model provider
        ANALYSIS_MODEL: Model for article and image analysis (provider:model)
        DIGEST_MODEL: Model for daily digest synthesis
        LLM_TIMEOUT_SECONDS: Per-call timeout for LLM requests

    Extraction:
        READER_BASE_URL: Content-extraction service base URL
        READER_API_KEY: Optional bearer token for the extraction service
        READER_TIMEOUT_SECONDS: Per-call timeout for extraction
        IMAGE_TIMEOUT_SECONDS: Per-image download timeout
        MAX_CONTENT_CHARS: Body text sent to the LLM before truncation
        MAX_IMAGES: Images described per article

    Queue:
        DB_PATH: SQLite database file path
        MAX_CONCURRENT: Jobs claimed per dispatch cycle
        MAX_RETRIES: Attempts before a job is marked failed
        RETRY_BASE_DELAY: Base backoff in seconds (0 = retry immediately)
        RETRY_MAX_DELAY: Backoff ceiling in seconds
        STALE_JOB_SECONDS: Processing jobs older than this are reclaimed
        POLL_INTERVAL_SECONDS: Delay between cycles in continuous mode

    Digest:
        DIGEST_TIMEZONE: Reference timezone for calendar days (IANA name)
        DIGEST_HOUR: Local hour after which yesterday's digest is generated
        DIGEST_EXPORT_DIR: Optional directory for markdown digest copies

    Notifications:
        PUSH_GATEWAY_URL: HTTP endpoint that relays push notifications
        PUSH_GATEWAY_TOKEN: Bearer token for the push gateway
        PUSH_TIMEOUT_SECONDS: Push request timeout

    Optional Features:
        ENABLE_LOGFIRE: Enable Logfire/OpenTelemetry tracing

    Logging:
        LOG_LEVEL: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_BACKUP_COUNT: Number of rotated log files to keep
        LOG_MAX_BYTES: Max log file size in bytes (0 = time-based rotation)
        LOG_FORMAT: Log format ('text' or 'json' for structured logging)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def _env(key: str, default: str = "") -> str:
    """Get string environment variable with optional default.

    Args:
        key: Environment variable name
        default: Value to return if not set

    Returns:
        Environment variable value or default
    """
    return os.environ.get(key, default)


def _env_int(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as integer
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer value for {key}: '{val}'")


def _env_float(key: str, default: float) -> float:
    """Get float environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as float
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Invalid float value for {key}: '{val}'")


def _env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable with default.

    Recognizes truthy values: '1', 'true', 'yes', 'on'
    Recognizes falsy values: '0', 'false', 'no', 'off'
    """
    val = os.environ.get(key, "").lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    return default


DEFAULT_MODEL = "anthropic:claude-haiku-4-5"


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Example:
        >>> config = Config.load()
        >>> if error := config.validate():
        ...     print(f"Config error: {error}")
    """

    # === LLM ===
    # PydanticAI format: provider:model, or openai:{name}@{base_url} for local servers
    llm_api_key: str = ""  # LLM_API_KEY
    analysis_model: str = DEFAULT_MODEL  # ANALYSIS_MODEL
    digest_model: str = DEFAULT_MODEL  # DIGEST_MODEL
    llm_timeout_seconds: float = 90.0  # LLM_TIMEOUT_SECONDS

    # === Extraction ===
    reader_base_url: str = "https://r.jina.ai"  # READER_BASE_URL
    reader_api_key: str = ""  # READER_API_KEY
    reader_timeout_seconds: float = 45.0  # READER_TIMEOUT_SECONDS
    image_timeout_seconds: float = 20.0  # IMAGE_TIMEOUT_SECONDS
    max_content_chars: int = 15000  # MAX_CONTENT_CHARS
    max_images: int = 5  # MAX_IMAGES

    # === Queue ===
    db_path: Path = field(default_factory=lambda: Path("saveflow.db"))  # DB_PATH
    max_concurrent: int = 5  # MAX_CONCURRENT - Jobs per dispatch cycle
    max_retries: int = 3  # MAX_RETRIES - Attempt ceiling per job
    retry_base_delay: float = 30.0  # RETRY_BASE_DELAY - 0 disables backoff
    retry_max_delay: float = 900.0  # RETRY_MAX_DELAY
    stale_job_seconds: int = 1800  # STALE_JOB_SECONDS
    poll_interval_seconds: int = 60  # POLL_INTERVAL_SECONDS

    # === Digest ===
    digest_timezone: str = "UTC"  # DIGEST_TIMEZONE
    digest_hour: int = 6  # DIGEST_HOUR
    digest_export_dir: Path | None = None  # DIGEST_EXPORT_DIR

    # === Notifications ===
    push_gateway_url: str = ""  # PUSH_GATEWAY_URL - empty = log only
    push_gateway_token: str = ""  # PUSH_GATEWAY_TOKEN
    push_timeout_seconds: float = 10.0  # PUSH_TIMEOUT_SECONDS

    # === Output Directories ===
    log_dir: Path = field(default_factory=lambda: Path("log"))  # LOG_DIR

    # === Logging Configuration ===
    log_level: str = "INFO"  # LOG_LEVEL
    log_backup_count: int = 30  # LOG_BACKUP_COUNT
    log_max_bytes: int = 0  # LOG_MAX_BYTES - 0 = time-based rotation
    log_format: str = "text"  # LOG_FORMAT - 'text' or 'json'

    # === Optional: Observability ===
    # Requires: pip install logfire
    enable_logfire: bool = False  # ENABLE_LOGFIRE
    logfire_token: str = ""  # LOGFIRE_TOKEN

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables."""
        export_dir = _env("DIGEST_EXPORT_DIR")
        return cls(
            llm_api_key=_env("LLM_API_KEY"),
            analysis_model=_env("ANALYSIS_MODEL", DEFAULT_MODEL),
            digest_model=_env("DIGEST_MODEL", DEFAULT_MODEL),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 90.0),
            reader_base_url=_env("READER_BASE_URL", "https://r.jina.ai").rstrip("/"),
            reader_api_key=_env("READER_API_KEY"),
            reader_timeout_seconds=_env_float("READER_TIMEOUT_SECONDS", 45.0),
            image_timeout_seconds=_env_float("IMAGE_TIMEOUT_SECONDS", 20.0),
            max_content_chars=_env_int("MAX_CONTENT_CHARS", 15000),
            max_images=_env_int("MAX_IMAGES", 5),
            db_path=Path(_env("DB_PATH", "saveflow.db")),
            max_concurrent=_env_int("MAX_CONCURRENT", 5),
            max_retries=_env_int("MAX_RETRIES", 3),
            retry_base_delay=_env_float("RETRY_BASE_DELAY", 30.0),
            retry_max_delay=_env_float("RETRY_MAX_DELAY", 900.0),
            stale_job_seconds=_env_int("STALE_JOB_SECONDS", 1800),
            poll_interval_seconds=_env_int("POLL_INTERVAL_SECONDS", 60),
            digest_timezone=_env("DIGEST_TIMEZONE", "UTC"),
            digest_hour=_env_int("DIGEST_HOUR", 6),
            digest_export_dir=Path(export_dir) if export_dir else None,
            push_gateway_url=_env("PUSH_GATEWAY_URL"),
            push_gateway_token=_env("PUSH_GATEWAY_TOKEN"),
            push_timeout_seconds=_env_float("PUSH_TIMEOUT_SECONDS", 10.0),
            log_dir=Path(_env("LOG_DIR", "log")),
            enable_logfire=_env_bool("ENABLE_LOGFIRE", False),
            logfire_token=_env("LOGFIRE_TOKEN"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_backup_count=_env_int("LOG_BACKUP_COUNT", 30),
            log_max_bytes=_env_int("LOG_MAX_BYTES", 0),
            log_format=_env("LOG_FORMAT", "text").lower(),
        )

    @property
    def tz(self) -> ZoneInfo:
        """Reference timezone for digest calendar days."""
        return ZoneInfo(self.digest_timezone)

    def validate(self) -> str | None:
        """Validate configuration for required fields and valid values.

        Returns:
            Error message string if invalid, None if valid.
        """
        if not self.llm_api_key and not _is_local_model(self.analysis_model):
            return "LLM_API_KEY environment variable is required"
        if not self.reader_base_url.startswith(("http://", "https://")):
            return f"Invalid READER_BASE_URL '{self.reader_base_url}'"
        if self.max_concurrent <= 0:
            return "MAX_CONCURRENT must be positive"
        if self.max_retries <= 0:
            return "MAX_RETRIES must be positive"
        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            return "RETRY_BASE_DELAY and RETRY_MAX_DELAY must be non-negative"
        if self.poll_interval_seconds <= 0:
            return "POLL_INTERVAL_SECONDS must be positive"
        if min(self.llm_timeout_seconds, self.reader_timeout_seconds, self.image_timeout_seconds) <= 0:
            return "Timeouts must be positive"
        if self.max_content_chars <= 0:
            return "MAX_CONTENT_CHARS must be positive"
        if self.max_images < 0:
            return "MAX_IMAGES must be non-negative"
        if not 0 <= self.digest_hour <= 23:
            return "DIGEST_HOUR must be between 0 and 23"
        try:
            ZoneInfo(self.digest_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            return f"Unknown DIGEST_TIMEZONE '{self.digest_timezone}'"
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return f"Invalid LOG_LEVEL '{self.log_level}' - must be DEBUG, INFO, WARNING, ERROR, or CRITICAL"
        if self.log_format not in ("text", "json"):
            return f"Invalid LOG_FORMAT '{self.log_format}' - must be 'text' or 'json'"
        if self.log_backup_count < 0:
            return "LOG_BACKUP_COUNT must be non-negative"
        if self.log_max_bytes < 0:
            return "LOG_MAX_BYTES must be non-negative"
        return None


def _is_local_model(model_str: str) -> bool:
    """Local OpenAI-compatible servers (openai:name@url) need no API key."""
    return model_str.startswith("openai:") and "@" in model_str
