"""
Logging configuration for the network resources injector.

Colored console output for interactive runs, JSON structured records for log
collectors, and an optional rotating file handler.
"""
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from .config import Settings, get_settings
from .request_context import request_uid_var

_CONFIGURED = False

SERVICE_NAME = "network-resources-injector"


class ContextFilter(logging.Filter):
    """Stamp the admission request UID and service name onto every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        uid = getattr(record, "request_uid", None) or request_uid_var.get()
        if uid is not None:
            record.request_uid = uid
        if not hasattr(record, "service"):
            record.service = SERVICE_NAME
        return True


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        log_color = self.COLORS.get(record.levelname, self.RESET)
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{log_color}{record.levelname}{self.RESET}"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """JSON structured formatter.

    Emits ``time``, ``level``, ``name`` and ``message`` plus any extra attributes
    attached to the record. Key material never reaches the log, but anything that
    looks like a secret is redacted anyway.
    """

    REDACT_KEYS = {"key", "private_key", "secret", "token", "authorization"}
    _STANDARD_ATTRS = {
        "args", "asctime", "created", "exc_info", "exc_text", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs", "message", "msg", "name",
        "pathname", "process", "processName", "relativeCreated", "stack_info", "thread",
        "threadName", "taskName",
    }

    def __init__(self, datefmt: Optional[str] = None) -> None:
        super().__init__(datefmt=datefmt)

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        uid = getattr(record, "request_uid", None) or request_uid_var.get()
        if uid:
            payload["request_uid"] = uid

        for key, value in record.__dict__.items():
            if key in self._STANDARD_ATTRS or key in payload:
                continue
            safe_key = str(key)
            payload[safe_key] = "***REDACTED***" if safe_key.lower() in self.REDACT_KEYS else value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(settings: Optional[Settings] = None, use_color: bool = True) -> logging.Logger:
    """Configure the root logger once.

    Args:
        settings: runtime settings, defaults to the environment derived ones
        use_color: colorize console output when stdout is a TTY

    Returns:
        logging.Logger: the package logger
    """
    global _CONFIGURED
    logger = logging.getLogger("network_resources_injector")

    if _CONFIGURED:
        return logger

    settings = settings or get_settings()
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())

    for h in list(root.handlers):
        root.removeHandler(h)

    context_filter = ContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(context_filter)
    if settings.log_json:
        console_formatter: logging.Formatter = JSONFormatter(datefmt=settings.log_date_format)
    elif use_color and sys.stdout.isatty():
        console_formatter = ColoredFormatter(settings.log_format, datefmt=settings.log_date_format)
    else:
        console_formatter = logging.Formatter(settings.log_format, datefmt=settings.log_date_format)
    console_handler.setFormatter(console_formatter)
    root.addHandler(console_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.addFilter(context_filter)
        if settings.log_json:
            file_handler.setFormatter(JSONFormatter(datefmt=settings.log_date_format))
        else:
            file_handler.setFormatter(logging.Formatter(settings.log_format, datefmt=settings.log_date_format))
        root.addHandler(file_handler)

    # uvicorn and the kubernetes client log through the root handlers
    for log_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "kubernetes"):
        l = logging.getLogger(log_name)
        l.handlers = []
        l.propagate = True

    # watchdog is chatty at DEBUG
    logging.getLogger("watchdog").setLevel(logging.INFO)

    _CONFIGURED = True
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a named logger."""
    return logging.getLogger(name)
