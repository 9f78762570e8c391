"""Logging setup and the structured audit trail."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, UTC
from typing import Any, Dict, Optional

AUDIT_LOGGER = logging.getLogger("videodrm.audit")
SECURITY_LOGGER = logging.getLogger("videodrm.security")

PLAIN_FORMAT = "%(levelname)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with any ``event`` dict merged in."""

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if isinstance(event, dict):
            data.update(event)
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def configure_logging(level: str = "INFO", json_output: bool = False, stream=None) -> None:
    """Install a single root handler. Safe to call more than once."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_videodrm", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler._videodrm = True
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(PLAIN_FORMAT))
    root.addHandler(handler)
    root.setLevel(level.upper())


def audit(outcome: str, status: int, **fields: Any) -> Dict[str, Any]:
    """Emit one audit event and return it."""
    event = {
        "timestamp": datetime.now(UTC).isoformat(),
        "outcome": outcome,
        "status": status,
    }
    event.update({k: v for k, v in fields.items() if v is not None})
    AUDIT_LOGGER.info("audit %s", json.dumps(event, default=str, sort_keys=True), extra={"event": event})
    return event


def security_event(kind: str, message: str, level: int = logging.WARNING, **fields: Any) -> None:
    """Log a security-relevant anomaly; always emitted regardless of user-facing result."""
    event: Dict[str, Any] = {"security_event": kind}
    event.update({k: v for k, v in fields.items() if v is not None})
    SECURITY_LOGGER.log(level, "%s: %s", kind, message, extra={"event": event})


def short_id(value: Optional[str], keep: int = 8) -> Optional[str]:
    """Truncate an identifier for log lines."""
    if value is None:
        return None
    return value[:keep]
