from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from policygate.config import get_log_format, get_log_level

# Attributes passed through ``extra=`` that are copied into each JSON line.
CONTEXT_FIELDS = ("policy", "check", "target")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s"

_HANDLER_NAME = "policygate"


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line, stamped with the record's creation time."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


class _StderrHandler(logging.StreamHandler):
    """Writes to the current ``sys.stderr``, even after it has been swapped."""

    def emit(self, record: logging.LogRecord) -> None:
        self.stream = sys.stderr
        super().emit(record)


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonLogFormatter()
    return logging.Formatter(TEXT_FORMAT)


def configure_logging() -> logging.Handler:
    """
    Install the policygate stderr handler on the root logger.

    Calling this again swaps the previous policygate handler for a fresh one,
    so the CLI and the server can both configure logging in one process.
    Handlers owned by other code are left alone.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, get_log_level(), logging.INFO))

    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    handler = _StderrHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(build_formatter(get_log_format()))
    root.addHandler(handler)
    return handler
