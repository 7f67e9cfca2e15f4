"""
Structured JSON logging for the task market service.

One JSON object per line. Marketplace identifiers passed through ``extra``
(task, bid, review, notification, actor, tasker) are lifted to the top
level of the record so log queries can filter on them directly.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

PACKAGE_LOGGER_NAME = "task_market_service"

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

ENTITY_KEYS: tuple[str, ...] = (
    "task_id",
    "bid_id",
    "review_id",
    "notification_id",
    "actor_id",
    "tasker_id",
)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def _record_extra(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS}


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "service": self._service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = _record_extra(record)
        for key in ENTITY_KEYS:
            if key in extra:
                payload[key] = extra.pop(key)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class DailyRotatingFileHandler(TimedRotatingFileHandler):
    """
    Write to ``<directory>/YYYY-MM-DD.log`` and switch files at midnight UTC.

    Rollover opens the next day's file instead of renaming the current one.
    """

    def __init__(self, directory: str) -> None:
        self._directory = Path(directory)
        super().__init__(self._dated_path(), when="midnight", utc=True, encoding="utf-8")

    def _dated_path(self) -> str:
        return str(self._directory / f"{datetime.now(tz=UTC).strftime('%Y-%m-%d')}.log")

    def doRollover(self) -> None:  # noqa: N802
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self.baseFilename = str(Path(self._dated_path()).resolve())
        if not self.delay:
            self.stream = self._open()
        self.rolloverAt = self.computeRollover(int(time.time()))


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """
    Configure JSON logging for the service.

    Handlers are attached once to the package logger, which every module
    logger is nested under, so repeated calls replace rather than stack them.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name stamped on every record
        log_directory: Directory for the daily rotating log files

    Raises:
        ValueError: If level is not a valid log level
    """
    level_upper = level.upper()
    if level_upper not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}")

    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    logger.setLevel(level_upper)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    Path(log_directory).mkdir(parents=True, exist_ok=True)
    formatter = JSONFormatter(service_name)
    for handler in (logging.StreamHandler(sys.stdout), DailyRotatingFileHandler(log_directory)):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a module logger under the package namespace."""
    if name == PACKAGE_LOGGER_NAME or name.startswith(f"{PACKAGE_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER_NAME}.{name}")
