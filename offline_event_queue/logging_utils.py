"""
Structured JSON logging utilities.

Queue components log through the standard ``logging`` module under the
``offline_event_queue`` logger tree. Applications that ship logs to a
collector can install the JSON formatter here so that the ``extra``
context attached by the queue (storage key, event ids, failure counts)
ends up as top-level fields.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

PACKAGE_LOGGER = "offline_event_queue"

# LogRecord attributes that are never copied as context fields
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Fields:
    - timestamp: record creation time, ISO 8601 in UTC
    - level, logger, message
    - exception: formatted traceback, when present
    - Any context passed through ``extra``
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            entry[key] = value

        return json.dumps(entry, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = PACKAGE_LOGGER,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Route a logger's output through the JSON formatter.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger,
            pass None for the root logger)
        stream: Output stream (default: stdout)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    # Replace rather than stack handlers when called twice
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_queue_logger(name: str) -> logging.Logger:
    """Logger named ``offline_event_queue.<name>``, e.g. ``stores.file``."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")


class QueueLoggerAdapter(logging.LoggerAdapter):
    """
    Attaches fixed queue context to every record.

    Per-call ``extra`` is merged with the adapter's context instead of
    replacing it.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs
