"""
Logging setup for the proxy process.

Plain text by default; JSON lines when PORTLESS_LOG_FORMAT=json so the
proxy output can be ingested by log tooling.
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# LogRecord attributes that are not user supplied "extra" fields
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Each line carries timestamp, level, logger and message, the source
    location, exception text when present and any ``extra`` fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}"

        log_entry: dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "file": f"{record.filename}:{record.lineno}",
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def is_json_logging_enabled() -> bool:
    """True if PORTLESS_LOG_FORMAT=json"""
    return os.getenv("PORTLESS_LOG_FORMAT", "text").lower() == "json"


def setup_logging(level: str | None = None, log_file: str | None = None, force: bool = True) -> None:
    """
    Configure the root logger from the environment.

    Environment variables:
    - PORTLESS_LOG_FORMAT: "json" or "text" (default: text)
    - PORTLESS_LOG_LEVEL: Log level (default: INFO)
    - PORTLESS_LOG_FILE: Optional log file path

    Args:
        level: Override log level (uses PORTLESS_LOG_LEVEL if None)
        log_file: Override log file (uses PORTLESS_LOG_FILE if None)
        force: Force reconfiguration of root logger
    """
    if level is None:
        level = os.getenv("PORTLESS_LOG_LEVEL", "INFO")
    if log_file is None:
        log_file = os.getenv("PORTLESS_LOG_FILE")

    formatter: logging.Formatter
    if is_json_logging_enabled():
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            print(f"Warning: Could not open log file {log_file}: {e}", file=sys.stderr)

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=force)
