"""
Event Service Logging Module
============================
Self-contained JSON logging setup for the event service.
Every record is emitted as a single JSON object so that an event's lifecycle
can be followed by ``event_id`` and ``correlation_id`` in any log pipeline.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

DEFAULT_LOG_DIR = Path(__file__).parent.parent / "logs"

# Attributes every LogRecord carries; anything else arrived through ``extra=``
_STANDARD_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}

# Correlation keys are written right after the fixed header for readability
_EVENT_CONTEXT_FIELDS = ("event_id", "event_type", "correlation_id", "channel")


class EventJSONFormatter(logging.Formatter):
    """JSON formatter for event service structured logging"""

    def __init__(self, exclude_fields: Optional[Iterable[str]] = None):
        super().__init__()
        self.exclude_fields = frozenset(exclude_fields or ())

    def _extra_fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            key: value
            for key, value in vars(record).items()
            if key not in _STANDARD_RECORD_ATTRS and key not in self.exclude_fields
        }

    def format(self, record: logging.LogRecord) -> str:
        extra = self._extra_fields(record)
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "service": "event_service",
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EVENT_CONTEXT_FIELDS:
            if key in extra:
                entry[key] = extra.pop(key)
        entry.update(extra)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


def _rotating_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    max_file_size: int,
    backup_count: int,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=max_file_size, backupCount=backup_count)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_event_logging(
    service_name: str = "event_service",
    log_level: str = "INFO",
    enable_file_logging: bool = False,
    log_dir: Optional[str] = None,
    max_file_size: int = 100 * 1024 * 1024,  # 100MB
    backup_count: int = 5,
    exclude_fields: Optional[List[str]] = None,
) -> logging.Logger:
    """
    Configure the named logger with JSON output to stdout and, optionally,
    to ``<service_name>.log`` plus an errors-only ``<service_name>_errors.log``.

    Calling it again for the same name replaces the previous handlers.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger(service_name)
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = EventJSONFormatter(exclude_fields=exclude_fields)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if enable_file_logging:
        directory = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)
        logger.addHandler(
            _rotating_handler(
                directory / f"{service_name}.log",
                level,
                formatter,
                max_file_size,
                backup_count,
            )
        )
        logger.addHandler(
            _rotating_handler(
                directory / f"{service_name}_errors.log",
                logging.ERROR,
                formatter,
                max_file_size,
                backup_count,
            )
        )

    logger.debug(
        "Event service logging configured",
        extra={
            "log_level": log_level,
            "file_logging": enable_file_logging,
            "handlers": len(logger.handlers),
        },
    )
    return logger
