"""Logging setup with structured output and context propagation.

Two context variables tag every record:
    - run_id: one dispatch cycle or one digest run
    - job_id: the queue job a concurrent task is working on

asyncio tasks copy the current context when they are created, so setting
job_id inside a per-job coroutine tags only that job's records even while
sibling jobs interleave on the same loop.

Usage:
    >>> from observability.logging import setup_logging, set_run_context
    >>> setup_logging(config)
    >>> set_run_context("a1b2c3d4")
    >>> logger.info("Cycle started")  # carries run_id
"""

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any

UNSET = "-"

run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default=UNSET)
job_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("job_id", default=UNSET)

LOG_FILE_NAME = "saveflow.log"

# Chatty client libraries only log warnings and up
QUIET_LOGGERS = ("aiohttp", "httpx", "httpcore", "openai", "anthropic", "asyncio")

# Attributes every LogRecord has; anything else was passed via extra=
_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {
    "message", "asctime", "run_id", "job_id",
}


def set_run_context(run_id: str) -> None:
    """Tag subsequent records in this context with ``run_id``."""
    run_id_var.set(run_id)


def set_job_context(job_id: str) -> None:
    """Tag subsequent records in this context with ``job_id``."""
    job_id_var.set(job_id)


def clear_context() -> None:
    run_id_var.set(UNSET)
    job_id_var.set(UNSET)


class ContextFilter(logging.Filter):
    """Copy the run/job context variables onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get()
        record.job_id = job_id_var.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: timestamp, level, logger, message, run_id, plus job_id when set,
    source location for warnings and up, the formatted exception, and any
    ``extra=`` fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", UNSET),
        }
        job_id = getattr(record, "job_id", UNSET)
        if job_id != UNSET:
            entry["job_id"] = job_id
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.filename}:{record.lineno} {record.funcName}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                entry[key] = value

        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``TIME [LEVEL] [run_id:job_id] logger: message``, job id shortened."""

    def __init__(self, include_date: bool = False):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] [%(run_id)s:%(short_job_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S" if include_date else "%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        job_id = getattr(record, "job_id", UNSET)
        record.short_job_id = job_id if job_id == UNSET else job_id[:8]
        if not hasattr(record, "run_id"):
            record.run_id = UNSET
        return super().format(record)


def _file_handler(config: Any) -> logging.Handler:
    """Size-based rotation when LOG_MAX_BYTES is set, daily otherwise."""
    config.log_dir.mkdir(parents=True, exist_ok=True)
    path = config.log_dir / LOG_FILE_NAME
    if config.log_max_bytes > 0:
        return RotatingFileHandler(
            path,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
    return TimedRotatingFileHandler(
        path,
        when="midnight",
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )


def setup_logging(config: Any, verbose: bool = False) -> bool:
    """Configure console and rotating file logging.

    The console honors LOG_LEVEL (or DEBUG with ``verbose``); the file
    always records DEBUG. An unwritable log directory degrades to
    console-only logging.

    Returns:
        True if file logging is enabled, False if console-only
    """
    json_output = config.log_format == "json"
    context = ContextFilter()

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO))
    console.setFormatter(JsonFormatter() if json_output else TextFormatter())
    console.addFilter(context)
    root.addHandler(console)

    try:
        file_handler = _file_handler(config)
    except OSError as e:
        print(
            f"Warning: Cannot write to log directory '{config.log_dir}': {e}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )
        file_handler = None

    if file_handler is not None:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JsonFormatter() if json_output else TextFormatter(include_date=True))
        file_handler.addFilter(context)
        root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return file_handler is not None
