"""
Logging setup for the server.

Text output by default; JSON lines when FRONTDOOR_LOG_FORMAT=json.
Request IDs and any `extra=` fields are carried into JSON entries.
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any

# Attributes every LogRecord has; anything else came in through `extra=`
_RESERVED_FIELDS = {
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
    "request_id",
}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Each entry has timestamp, level, logger and message, plus request_id,
    file, function and exception when available, plus any extra fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}Z"

        log_entry: dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            log_entry["request_id"] = request_id

        if record.pathname:
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        if record.funcName and record.funcName != "<module>":
            log_entry["function"] = record.funcName

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_FIELDS and not key.startswith("_"):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def is_json_logging_enabled() -> bool:
    """True when FRONTDOOR_LOG_FORMAT=json."""
    return os.getenv("FRONTDOOR_LOG_FORMAT", "text").lower() == "json"


def _build_handlers(log_file: str | None, formatter: logging.Formatter | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            print(f"Warning: Could not open log file {log_file}: {e}", file=sys.stderr)
    if formatter is not None:
        for handler in handlers:
            handler.setFormatter(formatter)
    return handlers


def setup_logging(level: str | None = None, log_file: str | None = None, force: bool = True) -> None:
    """
    Configure the root logger from arguments or environment.

    Environment variables:
    - FRONTDOOR_LOG_FORMAT: "json" or "text" (default: text)
    - FRONTDOOR_LOG_LEVEL: log level (default: INFO)
    - FRONTDOOR_LOG_FILE: optional log file path
    """
    if level is None:
        level = os.getenv("FRONTDOOR_LOG_LEVEL", "INFO")
    if log_file is None:
        log_file = os.getenv("FRONTDOOR_LOG_FILE")

    if is_json_logging_enabled():
        logging.basicConfig(
            level=level.upper(),
            handlers=_build_handlers(log_file, JSONFormatter()),
            force=force,
        )
        return

    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=_build_handlers(log_file, None),
        force=force,
    )


class RequestLogger:
    """
    Logger wrapper that stamps every record with a request ID.

    Usage:
        request_logger = RequestLogger(logging.getLogger(__name__), request_id="abc123")
        request_logger.info("Forwarding request")
    """

    def __init__(self, logger: logging.Logger, request_id: str):
        self.logger = logger
        self.request_id = request_id

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["request_id"] = self.request_id
        kwargs["extra"] = extra
        self.logger.log(level, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)
