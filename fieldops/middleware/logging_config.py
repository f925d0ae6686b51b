"""
Logging setup for the ticketing service.

Two output shapes share one set of context fields (request and ticket ids
passed through ``extra={...}``):
    - json: one object per line for the log pipeline (default outside DEBUG)
    - text: single line with a ticket/request suffix (default in DEBUG and tests)

LOG_LEVEL and LOG_FORMAT come from the environment first, then app config.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_KEYS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")
TICKET_KEYS = (
    "ticket_id",
    "reference_code",
    "from_status",
    "to_status",
    "actor_id",
    "expected_version",
    "distance_m",
    "levels",
)


def record_context(record: logging.LogRecord) -> dict:
    """The request/ticket fields set on *record*, skipping unset ones."""
    context = {}
    for key in REQUEST_KEYS + TICKET_KEYS:
        value = getattr(record, key, None)
        if value is not None:
            context[key] = value
    return context


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``08:00:01 INFO  fieldops.services.ticket_lifecycle: msg  [CM-20261018-0007 open->assigned by u-1]``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<5} {record.name}: {record.getMessage()}"
        suffix = self._suffix(record_context(record))
        if suffix:
            line += f"  [{suffix}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line

    @staticmethod
    def _suffix(ctx: dict) -> str:
        parts = []
        ref = ctx.get("reference_code") or (f"ticket={ctx['ticket_id']}" if "ticket_id" in ctx else None)
        if ref:
            parts.append(ref)
        if "to_status" in ctx:
            parts.append(f"{ctx.get('from_status') or 'new'}->{ctx['to_status']}")
        if "actor_id" in ctx:
            parts.append(f"by {ctx['actor_id']}")
        if "duration_ms" in ctx:
            parts.append(f"{ctx['duration_ms']:.0f}ms")
        if "request_id" in ctx:
            parts.append(f"req={ctx['request_id']}")
        return " ".join(parts)


FORMATTERS = {"json": JSONFormatter, "text": TextFormatter}


def configure_logging(app):
    """Install a single stderr handler on the root logger for *app*."""
    debug = app.config.get("DEBUG", False) or app.config.get("TESTING", False)

    level_name = os.getenv("LOG_LEVEL") or app.config.get("LOG_LEVEL") or ("DEBUG" if debug else "INFO")
    level = getattr(logging, level_name.upper(), logging.INFO)

    format_name = (os.getenv("LOG_FORMAT") or app.config.get("LOG_FORMAT") or ("text" if debug else "json")).lower()
    formatter_cls = FORMATTERS.get(format_name, JSONFormatter)

    # the app factory runs once per test; drop handlers from earlier builds
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter_cls())
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    app.logger.debug("Logging configured: level=%s format=%s", level_name, format_name)
