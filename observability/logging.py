"""Logging setup with run context propagation.

Every record passes through ContextFilter, which stamps it with the id of
the digest being produced (or "-" outside a run). Output is either text
or single-line JSON, to the console and to a rotating file.

Usage:
    >>> from observability.logging import setup_logging, set_run_context
    >>> setup_logging(config)
    >>> set_run_context("1f0c9a2b")
    >>> logger.info("Batch analyzed | batch=1/3")  # tagged with 1f0c9a2b
"""

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any

LOG_FILE = "seo_intel.log"

run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="-")

# LogRecord attributes that are not user-supplied `extra` fields
_RECORD_FIELDS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "taskName", "run_id", "message",
))


def set_run_context(run_id: str) -> None:
    """Tag subsequent log records with a run id."""
    run_id_var.set(run_id)


def clear_context() -> None:
    run_id_var.set("-")


class ContextFilter(logging.Filter):
    """Injects the current run id into every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation.

    Output format:
        {"timestamp": "...", "level": "INFO", "logger": "...", "message": "...", "run_id": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", "-"),
        }

        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_FIELDS:
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Format: TIMESTAMP [LEVEL] [run_id] logger: message"""

    def __init__(self, include_date: bool = False):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] [%(run_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S" if include_date else "%H:%M:%S",
        )


def _file_handler(config: Any) -> logging.Handler:
    log_file = config.log_dir / LOG_FILE
    if config.log_max_bytes > 0:
        return RotatingFileHandler(
            log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
    return TimedRotatingFileHandler(
        log_file,
        when="midnight",
        interval=1,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )


def setup_logging(config: Any, verbose: bool = False) -> bool:
    """Configure console and rotating file logging.

    Falls back to console-only logging when the log directory is not
    writable.

    Args:
        config: Application configuration with logging settings
        verbose: Use DEBUG on the console regardless of LOG_LEVEL

    Returns:
        True if file logging is enabled, False if console-only
    """
    console_level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    context_filter = ContextFilter()

    if config.log_format == "json":
        console_fmt, file_fmt = JsonFormatter(), JsonFormatter()
    else:
        console_fmt, file_fmt = TextFormatter(include_date=False), TextFormatter(include_date=True)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(console_fmt)
    console.addFilter(context_filter)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.addHandler(console)

    file_logging_enabled = False
    try:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = _file_handler(config)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_fmt)
        file_handler.addFilter(context_filter)
        root.addHandler(file_handler)
        file_logging_enabled = True
    except OSError as e:
        print(
            f"Warning: Cannot write to log directory '{config.log_dir}': {e}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )

    # Quiet chatty client libraries
    for lib in ("aiohttp", "urllib3", "httpx", "httpcore", "asyncio", "openai", "anthropic"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return file_logging_enabled
