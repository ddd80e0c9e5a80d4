"""
Logging configuration for the alert engine.

Two output shapes, chosen by ENVIRONMENT:

    production   one JSON object per line; request context under "context",
                 alert-pipeline fields under "alert"
    otherwise    coloured console line; pipeline fields appended as
                 [alert=ALR-… channel=email …] so a single alert can be
                 followed through resolve → record → dispatch → push

Pipeline fields are passed by callers through ``extra``:

    logger.error("Notification failed", extra={"alert_id": alert_id,
                                               "recipient_id": sid,
                                               "channel": "sms"})

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar("request_context", default={})

# Alert-pipeline attributes, in the order they are printed
PIPELINE_FIELDS = (
    "alert_id", "reading_id", "severity", "block", "plant", "area", "tier",
    "recipient_id", "channel", "recipient_count", "room",
)
# Per-request attributes set by the middleware
HTTP_FIELDS = ("duration_ms", "status_code", "endpoint")

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosmtplib")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request-scoped context; call with no args to clear."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def pipeline_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Pipeline extras present on the record, skipping None values."""
    fields = {}
    for key in PIPELINE_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON document per record for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        ctx = get_request_context()
        if ctx:
            entry["context"] = ctx

        alert = pipeline_fields(record)
        if alert:
            entry["alert"] = alert

        for key in HTTP_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line output for local runs."""

    LEVEL_COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelname, self.RESET)
        line = (
            f"{colour}{self.formatTime(record, '%H:%M:%S')} "
            f"{record.levelname:8s}{self.RESET}"
        )

        request_id = get_request_context().get("request_id")
        if request_id:
            line += f" [{request_id[:8]}]"
        line += f" {record.name}: {record.getMessage()}"

        alert = pipeline_fields(record)
        if alert:
            line += " [" + " ".join(f"{k}={v}" for k, v in alert.items()) + "]"

        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging() -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else ConsoleFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DATABASE_ECHO else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
