"""Configuration management for the SEO intelligence pipeline.

This module provides centralized configuration for all pipeline components.
All settings are loaded from environment variables with sensible defaults.

Environment Variables:
    Scheduling:
        PIPELINE_ENABLED: Scheduled runs are no-ops when false
        RUN_CADENCE: 'daily', 'weekly' or 'monthly' (period granularity)
        RUN_DAY: Day of month (monthly) or ISO weekday (weekly) a run becomes due
        POLL_INTERVAL_SECONDS: Delay between checks in continuous mode

    Models (PydanticAI format - provider:model):
        ANALYZER_MODEL: Model used to analyze article batches
        ANALYZER_MAX_TOKENS: Response token cap per provider call
        SOP_REFINE_ENABLED: Polish SOP drafts with a second model call
        SOP_MODEL: Model for SOP refinement (defaults to ANALYZER_MODEL)
        ANTHROPIC_API_KEY: Required for anthropic:* models

    Analysis:
        BATCH_SIZE: Articles per provider call
        MAX_ARTICLE_CHARS: Per-article content budget in the prompt
        AGENCY_NAME / AGENCY_FOCUS: Prompt framing

    Fetching:
        LOOKBACK_DAYS: Skip items published before this window
        FETCH_TIMEOUT_SECONDS: Per HTTP request
        SOURCE_TIMEOUT_SECONDS: Per source (all requests for one source)
        PROVIDER_TIMEOUT_SECONDS: Per provider call
        MAX_WORKERS: Concurrent source fetches
        YOUTUBE_API_KEY: YouTube Data API key (YouTube sources need it)

    Storage & Delivery:
        DB_PATH: SQLite database file path
        REPORTS_DIR: Directory for markdown digest reports
        RETENTION_DAYS: Prune finished digests older than this
        NOTIFICATION_WEBHOOK_URL: HTTP endpoint for digest alerts
        ALERTS_FILE: Path for JSONL alert file

    Optional Features:
        ENABLE_LOGFIRE: Enable Logfire/OpenTelemetry tracing

    Logging:
        LOG_LEVEL: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_DIR: Directory for log files
        LOG_BACKUP_COUNT: Number of rotated log files to keep
        LOG_MAX_BYTES: Max log file size in bytes (0 = time-based rotation)
        LOG_FORMAT: Log format ('text' or 'json' for structured logging)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

CADENCES = ("daily", "weekly", "monthly")


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

    Args:
        key: Environment variable name
        default: Value to return if not set

    Returns:
        Parsed integer or default value

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


DEFAULT_MODEL = "anthropic:claude-sonnet-4-5"

DEFAULT_AGENCY_FOCUS = (
    "a digital marketing agency running a Local Market Domination system "
    "(review generation, Google Business Profile optimization, Local Service Ads, "
    "and service/location landing pages) for high-ticket landscape, hardscape "
    "and outdoor living contractors"
)


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Example:
        >>> config = Config.load()
        >>> if error := config.validate():
        ...     print(f"Config error: {error}")
    """

    # === Scheduling ===
    pipeline_enabled: bool = True  # PIPELINE_ENABLED
    run_cadence: str = "monthly"  # RUN_CADENCE - daily, weekly, monthly
    run_day: int = 1  # RUN_DAY - Day of month / ISO weekday the run becomes due
    poll_interval_seconds: int = 3600  # POLL_INTERVAL_SECONDS

    # === AI Models ===
    analyzer_model: str = DEFAULT_MODEL
    analyzer_max_tokens: int = 8192
    sop_refine_enabled: bool = False
    sop_model: str = DEFAULT_MODEL
    anthropic_api_key: str = ""  # ANTHROPIC_API_KEY

    # === Analysis ===
    batch_size: int = 20  # BATCH_SIZE - Articles per provider call
    max_article_chars: int = 6000  # MAX_ARTICLE_CHARS
    agency_name: str = "Tekton Growth"
    agency_focus: str = DEFAULT_AGENCY_FOCUS

    # === Fetching ===
    lookback_days: int = 45
    fetch_timeout_seconds: int = 30
    source_timeout_seconds: int = 120
    provider_timeout_seconds: int = 300
    max_workers: int = 8  # MAX_WORKERS - Concurrent source fetches
    youtube_api_key: str = ""

    # === Storage ===
    db_path: Path = field(default_factory=lambda: Path("seo_intel.db"))  # DB_PATH
    reports_dir: Path = field(default_factory=lambda: Path("reports"))  # REPORTS_DIR
    retention_days: int = 365  # RETENTION_DAYS

    # === Notifications ===
    webhook_url: str = ""  # NOTIFICATION_WEBHOOK_URL - POST endpoint for alerts
    alerts_file: str = ""  # ALERTS_FILE - JSONL file path for alerts

    # === Logging Configuration ===
    log_dir: Path = field(default_factory=lambda: Path("log"))  # LOG_DIR
    log_level: str = "INFO"
    log_backup_count: int = 30
    log_max_bytes: int = 0
    log_format: str = "text"

    # === Optional: Observability ===
    # Requires: pip install logfire
    enable_logfire: bool = False
    logfire_token: str = ""

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables."""
        analyzer_model = _env("ANALYZER_MODEL", DEFAULT_MODEL)
        return cls(
            pipeline_enabled=_env_bool("PIPELINE_ENABLED", True),
            run_cadence=_env("RUN_CADENCE", "monthly").lower(),
            run_day=_env_int("RUN_DAY", 1),
            poll_interval_seconds=_env_int("POLL_INTERVAL_SECONDS", 3600),
            analyzer_model=analyzer_model,
            analyzer_max_tokens=_env_int("ANALYZER_MAX_TOKENS", 8192),
            sop_refine_enabled=_env_bool("SOP_REFINE_ENABLED", False),
            sop_model=_env("SOP_MODEL", analyzer_model),
            anthropic_api_key=_env("ANTHROPIC_API_KEY"),
            batch_size=_env_int("BATCH_SIZE", 20),
            max_article_chars=_env_int("MAX_ARTICLE_CHARS", 6000),
            agency_name=_env("AGENCY_NAME", "Tekton Growth"),
            agency_focus=_env("AGENCY_FOCUS", DEFAULT_AGENCY_FOCUS),
            lookback_days=_env_int("LOOKBACK_DAYS", 45),
            fetch_timeout_seconds=_env_int("FETCH_TIMEOUT_SECONDS", 30),
            source_timeout_seconds=_env_int("SOURCE_TIMEOUT_SECONDS", 120),
            provider_timeout_seconds=_env_int("PROVIDER_TIMEOUT_SECONDS", 300),
            max_workers=_env_int("MAX_WORKERS", 8),
            youtube_api_key=_env("YOUTUBE_API_KEY"),
            db_path=Path(_env("DB_PATH", "seo_intel.db")),
            reports_dir=Path(_env("REPORTS_DIR", "reports")),
            retention_days=_env_int("RETENTION_DAYS", 365),
            webhook_url=_env("NOTIFICATION_WEBHOOK_URL"),
            alerts_file=_env("ALERTS_FILE"),
            log_dir=Path(_env("LOG_DIR", "log")),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_backup_count=_env_int("LOG_BACKUP_COUNT", 30),
            log_max_bytes=_env_int("LOG_MAX_BYTES", 0),
            log_format=_env("LOG_FORMAT", "text").lower(),
            enable_logfire=_env_bool("ENABLE_LOGFIRE", False),
            logfire_token=_env("LOGFIRE_TOKEN"),
        )

    def validate(self) -> str | None:
        """Validate configuration for required fields and valid values.

        Returns:
            Error message string if invalid, None if valid.
        """
        if self.run_cadence not in CADENCES:
            return f"Invalid RUN_CADENCE '{self.run_cadence}' - must be daily, weekly, or monthly"
        if self.run_cadence == "monthly" and not 1 <= self.run_day <= 28:
            return "RUN_DAY must be between 1 and 28 for monthly cadence"
        if self.run_cadence == "weekly" and not 1 <= self.run_day <= 7:
            return "RUN_DAY must be an ISO weekday (1-7) for weekly cadence"
        for model in {self.analyzer_model, self.sop_model}:
            if model.startswith("anthropic:") and not self.anthropic_api_key:
                return "ANTHROPIC_API_KEY environment variable is required for anthropic models"
        if self.batch_size <= 0:
            return "BATCH_SIZE must be positive"
        if self.max_article_chars <= 0:
            return "MAX_ARTICLE_CHARS must be positive"
        if self.lookback_days <= 0:
            return "LOOKBACK_DAYS must be positive"
        if min(self.fetch_timeout_seconds, self.source_timeout_seconds, self.provider_timeout_seconds) <= 0:
            return "Timeouts must be positive"
        if self.max_workers <= 0:
            return "MAX_WORKERS must be positive"
        if self.poll_interval_seconds <= 0:
            return "POLL_INTERVAL_SECONDS must be positive"
        if self.retention_days <= 0:
            return "RETENTION_DAYS must be positive"
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return f"Invalid LOG_LEVEL '{self.log_level}' - must be DEBUG, INFO, WARNING, ERROR, or CRITICAL"
        if self.log_format not in ("text", "json"):
            return f"Invalid LOG_FORMAT '{self.log_format}' - must be 'text' or 'json'"
        if self.log_backup_count < 0:
            return "LOG_BACKUP_COUNT must be non-negative"
        if self.log_max_bytes < 0:
            return "LOG_MAX_BYTES must be non-negative"
        return None
