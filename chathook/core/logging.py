"""
Structured logging configuration.

Every module logs through a child of the ``chathook`` logger. Structured fields
go in ``extra={"extra_data": {...}}`` and are rendered by either formatter.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from chathook.core.config import get_settings

ROOT_LOGGER = "chathook"


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human readable formatter for development and the batch loader."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            pairs = " ".join(f"{key}={value}" for key, value in extra_data.items())
            line = f"{line} [{pairs}]"
        return line


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format.lower() == "json":
        return JSONFormatter()
    return TextFormatter()


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``chathook`` logger from settings.

    ``level`` overrides the configured level (the batch loader's ``--verbose``).
    Safe to call repeatedly; the handler is replaced, not duplicated.
    """
    settings = get_settings()
    resolved = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(build_formatter(settings.log_format))
    logger.addHandler(handler)

    # Keep uvicorn's root configuration from printing our lines twice
    logger.propagate = False

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
