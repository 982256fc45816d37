"""
Structured logging configuration.

- Development: one readable line per record, floor context appended
  (``item=CAB-0042 loc=3 stage=weld by=op-12``)
- Production: JSON lines for the log aggregator
- Log level: LOG_LEVEL env variable

Services attach floor context through ``extra=``; ``RequestContextFilter``
stamps the current request id onto every record emitted while a request
is being handled, so service log lines can be joined to access logs.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Request fields written by the timing middleware.
_REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")

# Floor context passed by services, with the short label used in readable output.
_CONTEXT_FIELDS = {
    "item_code": "item",
    "item_id": "item_id",
    "location_id": "loc",
    "workflow_id": "wf",
    "stage_id": "stage",
    "actor": "by",
}


class RequestContextFilter(logging.Filter):
    """Copy ``g.request_id`` onto records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = getattr(g, "request_id", None)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in (*_REQUEST_FIELDS, *_CONTEXT_FIELDS):
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line formatter for a developer terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        context = [
            f"{label}={getattr(record, key)}"
            for key, label in _CONTEXT_FIELDS.items()
            if getattr(record, key, None) is not None
        ]
        if context:
            line += f"  [{' '.join(context)}]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    JSON unless the app runs in debug or testing mode. LOG_LEVEL overrides
    the default level (DEBUG in development, INFO otherwise).
    """
    is_testing = app.config.get("TESTING", False)
    use_json = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "DEBUG" if app.config.get("DEBUG") else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    # create_app runs more than once under pytest; replace, don't stack
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for chatty in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(chatty).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, "json" if use_json else "readable")
