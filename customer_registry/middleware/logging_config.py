"""
Customer Registry
Logging setup.

Every record emitted while a request is active is tagged with the request id
and the acting user, so the audit trail in the log lines up with the
created_by / last_modified_by / executed_by columns.

Formats (``LOG_FORMAT`` config / env):
    readable  -- one colored line per record (development, tests)
    json      -- one JSON object per record (production, log shipping)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Attributes lifted from ``extra={...}`` into the JSON document.
CONTEXT_FIELDS = (
    "request_id",
    "actor",
    "method",
    "path",
    "status",
    "duration_ms",
    "customer_id",
    "document_id",
    "task_id",
    "command",
    "event_type",
)

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
_RESET = "\033[0m"


class RequestContextFilter(logging.Filter):
    """Attach request_id / actor from ``flask.g`` unless the caller set them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor", None) is None:
                record.actor = getattr(g, "current_user", None)
        return True


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                doc[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            doc["exc"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = []
        for key in ("request_id", "actor", "customer_id"):
            value = getattr(record, key, None)
            if value:
                tags.append(f"{key}={value}")
        suffix = f" [{' '.join(tags)}]" if tags else ""
        line = f"{color}{ts} {record.levelname:<8}{_RESET} {record.name}: {record.getMessage()}{suffix}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one root stream handler according to LOG_LEVEL / LOG_FORMAT."""
    default_level = "DEBUG" if app.debug or app.testing else "INFO"
    level_name = (os.getenv("LOG_LEVEL") or app.config.get("LOG_LEVEL") or default_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = (os.getenv("LOG_FORMAT") or app.config.get("LOG_FORMAT") or "readable").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    # Replaced, not appended: the factory runs more than once under pytest
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
