"""Logging setup for the URL Metric service and client.

``setup_logging()`` configures the root logger once at startup:
    - console output, plain text or JSON (``settings.log_format``)
    - a rotating plain-text log file
    - the current request id on every record, taken from a ContextVar that
      RequestIDMiddleware sets for the duration of a request

Modules get loggers with ``get_logger(__name__)``. Exception messages that
may carry secrets (HMAC tags, priming keys, database credentials) are passed
through ``sanitize_error()`` before being logged.
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from detective.core.config import Settings, get_settings

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(request_id)s | %(name)s | %(message)s"

# Libraries that log every request or statement at INFO
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore")

_SECRET_PATTERNS = (
    (
        re.compile(r"(password|secret|token|hmac|api[_-]?key|priming[_-]?key)[=:]\s*\S+", re.IGNORECASE),
        "[REDACTED]",
    ),
    (re.compile(r"://[^/\s:@]+:[^/\s@]+@"), "://[REDACTED]@"),
)
_PATH_PATTERN = re.compile(r"(?:/[\w.-]+){2,}")

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    return _request_id.get()


def set_request_id(request_id: str | None) -> None:
    _request_id.set(request_id)


class ContextFilter(logging.Filter):
    """Stamp each record with the current request id ("-" outside requests)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"  # type: ignore[attr-defined]
        return True


class DetectiveJsonFormatter(JsonFormatter):
    """One JSON object per record with timestamp, level, logger and request id."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.fromtimestamp(record.created, UTC).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        request_id = getattr(record, "request_id", "-")
        if request_id != "-":
            log_record["request_id"] = request_id


def _console_handler(settings: Settings) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(DetectiveJsonFormatter("%(message)s"))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    return handler


def _file_handler(settings: Settings) -> logging.Handler:
    log_path = Path(settings.log_file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=log_path,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    return handler


def setup_logging() -> None:
    """Configure root logging from settings. Safe to call more than once."""
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handlers = [_console_handler(settings)]
    try:
        handlers.append(_file_handler(settings))
    except OSError as e:
        print(f"File logging disabled: {e}", file=sys.stderr)  # noqa: T201

    context_filter = ContextFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.addFilter(context_filter)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info(
        f"Logging configured: level={logging.getLevelName(level)}, "
        f"format={settings.log_format}, file={settings.log_file_path}"
    )


def sanitize_error(error: BaseException, max_length: int = 500) -> str:
    """Render an exception for logging without secrets or absolute paths.

    Args:
        error: Exception to render
        max_length: Longest message kept before truncation

    Returns:
        Redacted, path-shortened and truncated message
    """
    message = str(error)
    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    message = _PATH_PATTERN.sub(lambda match: ".../" + match.group(0).rsplit("/", 1)[-1], message)
    if len(message) > max_length:
        message = message[:max_length] + "...[truncated]"
    return message


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
