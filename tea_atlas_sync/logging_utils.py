"""
Structured JSON logging for the sync layer.

Every record emitted through a ``SyncLoggerAdapter`` carries the live state
of its session (owner, degraded flag, pending write count). The JSON
formatter groups those fields, plus the operation and target of the write
being logged, under a single ``sync`` object so log queries can filter on
them without knowing which module logged.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Protocol

SYNC_FIELDS = ("owner", "degraded", "pending", "operation", "target_id")

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
}


class _SessionState(Protocol):
    owner: str | None
    degraded: bool
    pending: list


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON formatter for sync logs.

    Outputs single-line JSON objects:
    - timestamp: ISO 8601 in UTC, from the record's creation time
    - level, logger, message
    - sync: session fields (owner, degraded, pending, operation, target_id)
      when the record carries any of them
    - any other extra fields at top level
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        sync: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in SYNC_FIELDS:
                sync[key] = _jsonable(value)
            else:
                log_obj[key] = _jsonable(value)
        if sync:
            log_obj["sync"] = sync

        return json.dumps(log_obj, default=str)


def configure_structured_logging(
    level: int | str = logging.INFO,
    logger_name: str | None = "tea_atlas_sync",
) -> logging.Logger:
    """
    Send the sync layer's logs to stdout as JSON.

    Args:
        level: Logging level, as a number or a name such as ``"DEBUG"``
        logger_name: Logger to configure (default: the package logger)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())

    logger.addHandler(handler)
    logger.setLevel(level)

    return logger


class SyncLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps every record with the session's current state.

    The state is read when the record is emitted, so a warning logged while
    entering degraded mode already reports ``degraded=True``.
    """

    def __init__(self, logger: logging.Logger, session: _SessionState) -> None:
        super().__init__(logger, {})
        self.session = session

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra: dict[str, Any] = {
            "owner": self.session.owner,
            "degraded": self.session.degraded,
            "pending": len(self.session.pending),
        }
        extra.update(kwargs.get("extra", {}))
        kwargs["extra"] = extra
        return msg, kwargs
