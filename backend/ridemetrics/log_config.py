"""Logging setup for the RideMetrics API.

LOG_FORMAT selects single-line JSON ("json", the default) or plain text
("text"). Processing code attaches athlete/activity context to a record with
``extra=log_context(...)``; the JSON output carries it under ``context`` and
the text output appends it as ``key=value`` pairs.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone

SERVICE_NAME = "ridemetrics"

# Context keys accepted by log_context, stored on records with this prefix
CONTEXT_PREFIX = "rm_"
CONTEXT_FIELDS = ("athlete_id", "activity_id", "batch_size", "seen", "unseen")

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access")


def log_context(**fields) -> dict:
    """
    Build a logging ``extra`` mapping for processing context.

    Raises:
        ValueError: For a key not listed in CONTEXT_FIELDS
    """
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context: {', '.join(sorted(unknown))}")
    return {CONTEXT_PREFIX + key: value for key, value in fields.items() if value is not None}


def record_context(record: logging.LogRecord) -> dict:
    """Context fields set on ``record`` in CONTEXT_FIELDS order."""
    context = {}
    for key in CONTEXT_FIELDS:
        value = getattr(record, CONTEXT_PREFIX + key, None)
        if value is not None:
            context[key] = value
    return context


class JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = record_context(record)
        if context:
            log_entry["context"] = context
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain text with trailing ``key=value`` context, for local runs."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{pairs}]{sep}{tail}"


def setup_logging(log_format: str, level: str | int = logging.INFO) -> None:
    """Configure the root logger for JSON or text output on stderr."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
