"""Structured logging with secrets redaction.

Supports two modes:
  - ENV=prod → JSON lines, one object per record
  - ENV!=prod → Human-readable plaintext

Log messages name the records they touch as ``session=<id>`` / ``user=<id>``;
the JSON formatter lifts those into ``session_id`` / ``user_id`` fields, as
it does for ``extra={"job": ...}`` passed by the reconciliation loops.
"""
import json
import logging
import re
import sys
from typing import Optional

from observability.redaction import redact
from config.settings import Settings, get_settings

_CORRELATION_FIELDS = {
    "session_id": re.compile(r"session=([\w\-]+)"),
    "user_id": re.compile(r"user=([\w\-]+)"),
}
_EXTRA_FIELDS = ("job",)

PLAINTEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


class RedactingFormatter(logging.Formatter):
    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, redaction: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.redaction = redaction

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        return redact(text) if self.redaction else text


class JSONFormatter(RedactingFormatter):
    """One JSON object per record; the whole line is redacted, traceback included."""

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        entry = {
            "ts": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "msg": msg,
        }
        for field, pattern in _CORRELATION_FIELDS.items():
            m = pattern.search(msg)
            if m:
                entry[field] = m.group(1)
        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)

        raw = json.dumps(entry, default=str)
        return redact(raw) if self.redaction else raw


def build_formatter(settings: Settings) -> logging.Formatter:
    if settings.ENV == "prod":
        return JSONFormatter(redaction=settings.LOG_REDACTION_ENABLED)
    return RedactingFormatter(PLAINTEXT_FORMAT, DATE_FORMAT, redaction=settings.LOG_REDACTION_ENABLED)


def setup_logging(settings: Optional[Settings] = None, level: Optional[str] = None) -> None:
    """Configure root logger — JSON in prod, plaintext in dev."""
    settings = settings or get_settings()
    log_level = level or settings.LOG_LEVEL

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(settings))

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    # Driver heartbeats and access lines drown out session events
    for noisy in ("uvicorn.access", "motor", "pymongo"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
