"""
Logging setup for the AOG Tracker.

One stderr handler on the root logger, formatter picked by environment:

    DEBUG app       → ReadableFormatter (colored, one line per record)
    TESTING app     → ReadableFormatter, startup message suppressed
    everything else → JSONFormatter (one JSON object per line)

LOG_LEVEL overrides the level. Services pass AOG context through
``extra={"event_id": ..., "actor_id": ...}``; both formatters render it.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Request fields set by the timing middleware
REQUEST_KEYS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")

# Domain fields set by the AOG services
AOG_KEYS = ("actor_id", "event_id", "aircraft_id", "from_status", "to_status")

EXTRA_KEYS = REQUEST_KEYS + AOG_KEYS

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "flask_limiter")


def _context(record: logging.LogRecord, keys) -> dict:
    return {k: getattr(record, k) for k in keys if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    """Log aggregator format: one JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_context(record, EXTRA_KEYS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for a developer terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{stamp} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        tags = _context(record, AOG_KEYS)
        if tags:
            line += " [" + " ".join(f"{k}={v}" for k, v in tags.items()) + "]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler for ``app``. Safe to call once per app instance."""
    testing = bool(app.config.get("TESTING"))
    readable = bool(app.config.get("DEBUG")) or testing

    level_name = os.getenv("LOG_LEVEL", "DEBUG" if readable else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ReadableFormatter() if readable else JSONFormatter())
    handler.setLevel(level)

    # Replace rather than append: tests build several apps in one process
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured level=%s format=%s", level_name, "readable" if readable else "json")
