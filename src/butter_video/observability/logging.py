"""Structured JSON logging for butter-video runs."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sys
from typing import Any


ROOT_LOGGER = "butter_video"

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    return value


class _JsonFormatter(logging.Formatter):
    """Emit one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_"):
                continue
            payload[key] = _jsonable(value)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, sort_keys=True, default=str)


def configure_logging(level: str = "WARNING") -> logging.Logger:
    """Configure the package logger once; later calls adjust the level and
    rebind the handler to the current stderr.

    Records go to stderr so stdout stays reserved for the score.
    """

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())
    if logger.handlers:
        for existing in logger.handlers:
            if isinstance(existing, logging.StreamHandler):
                existing.setStream(sys.stderr)
        return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Return a logger under the butter_video namespace."""

    return logging.getLogger(name)


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Emit a structured event log line."""

    logger.log(level, event, extra={"event": event, **fields})
