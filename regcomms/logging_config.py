"""Structured logging configuration.

Provides JSON-formatted logging with correlation and incident IDs so that
every record emitted while handling one incident can be traced together.
"""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Request correlation ID - set by CorrelationIdMiddleware
correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Incident being processed - set by the escalation engine
incident_id_ctx: ContextVar[str | None] = ContextVar("incident_id", default=None)


def _context_fields() -> dict[str, str]:
    fields: dict[str, str] = {}
    correlation_id = correlation_id_ctx.get()
    if correlation_id:
        fields["correlation_id"] = correlation_id
    incident_id = incident_id_ctx.get()
    if incident_id:
        fields["incident_id"] = incident_id
    return fields


class JsonFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record.

    Keys: timestamp, level, service, logger, message, any context IDs,
    the structured extra fields of the call, and exception/location
    details for errors.
    """

    def __init__(self, service_name: str = "regcomms-api"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(_context_fields())

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.levelno >= logging.ERROR:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development.

    Format: timestamp - service - level - [correlation_id] - message key=value...
    """

    def __init__(self, service_name: str = "regcomms-api"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        correlation_id = correlation_id_ctx.get() or "-"

        base_msg = (
            f"{timestamp} - {self.service_name} - {record.levelname} - "
            f"[{correlation_id}] - {record.getMessage()}"
        )

        fields = dict(_context_fields())
        fields.pop("correlation_id", None)
        fields.update(getattr(record, "extra_fields", {}))
        if fields:
            base_msg += " " + " ".join(f"{k}={v}" for k, v in fields.items())

        if record.exc_info:
            base_msg += f"\n{self.formatException(record.exc_info)}"

        return base_msg


def setup_logging(
    log_format: str = "json",
    log_level: str = "INFO",
    service_name: str = "regcomms-api",
) -> None:
    """Configure structured logging for the application.

    Args:
        log_format: 'json' for structured logging, 'text' for human-readable
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name to include in logs
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if log_format.lower() == "json":
        handler.setFormatter(JsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(TextFormatter(service_name=service_name))
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class StructuredLogger:
    """Logger wrapper that accepts structured keyword fields."""

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        msg: str,
        extra_fields: dict[str, Any],
        exc_info: bool = False,
    ) -> None:
        record_extra = {"extra_fields": extra_fields} if extra_fields else {}
        self._logger.log(level, msg, extra=record_extra, exc_info=exc_info)

    def debug(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.DEBUG, msg, extra_fields)

    def info(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.INFO, msg, extra_fields)

    def warning(self, msg: str, exc_info: bool = False, **extra_fields: Any) -> None:
        self._log(logging.WARNING, msg, extra_fields, exc_info=exc_info)

    def error(self, msg: str, exc_info: bool = False, **extra_fields: Any) -> None:
        self._log(logging.ERROR, msg, extra_fields, exc_info=exc_info)

    def exception(self, msg: str, **extra_fields: Any) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, msg, extra_fields, exc_info=True)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance (typically ``get_logger(__name__)``)."""
    return StructuredLogger(name)


@contextmanager
def incident_context(incident_id: object) -> Iterator[None]:
    """Attach an incident id to every record logged inside the block."""
    token = incident_id_ctx.set(str(incident_id))
    try:
        yield
    finally:
        incident_id_ctx.reset(token)
