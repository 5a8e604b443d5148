"""
Structured JSON logging configuration.

Every record is emitted as a single JSON line.  Callers attach
correlation fields through ``extra=``; the ones listed in
``_CONTEXT_FIELDS`` are copied onto the line when present.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from telemetry_copilot.core.config import settings

_CONTEXT_FIELDS = ("request_id", "session_id", "action", "attempt")


class JsonFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger with structured JSON output."""
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())

    # Prevent duplicate handlers on reload
    if any(isinstance(h.formatter, JsonFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    # Provider SDKs log every HTTP round-trip at INFO
    for noisy in ("httpx", "httpcore", "openai", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a named logger."""
    return logging.getLogger(name)
