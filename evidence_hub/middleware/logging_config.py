"""
Structured logging configuration.

- Development: one colored line per record, prefixed with [request user]
- Production: one JSON object per record (log aggregator compatible)
- Log level: LOG_LEVEL config value (env-driven, see config.py)

Every record emitted inside a request carries ``request_id`` and ``user_id``
(stamped by RequestContextFilter). Services add the evidence and hierarchy
ids they act on through ``extra=``:

    logger.info("Evidence moved ...", extra={"evidence_id": e.id, "evidence_code": e.code})
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Request fields, reported at the top level of JSON entries
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id", "user_id")

# Evidence / hierarchy ids, grouped under "scope" in JSON entries
SCOPE_FIELDS = (
    "program_id",
    "organization_id",
    "standard_id",
    "criteria_id",
    "evidence_id",
    "evidence_code",
    "file_id",
    "result_count",
)


class RequestContextFilter(logging.Filter):
    """Copy request_id / user_id from flask.g onto records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "user_id", None) is None:
                principal = getattr(g, "principal", None)
                record.user_id = principal.id if principal is not None else None
        return True


def _scope(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in SCOPE_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """JSON entries: request fields flat, evidence/hierarchy ids under "scope"."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": f"{record.module}:{record.lineno}",
        }
        for key in REQUEST_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        scope = _scope(record)
        if scope:
            log_entry["scope"] = scope
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:00:01 INFO  [req=ab12 user=3] evidence_hub.x: message  code=H1.01.01.01``"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        request_id = getattr(record, "request_id", None)
        user_id = getattr(record, "user_id", None)
        ctx = ""
        if request_id or user_id is not None:
            ctx = f" [req={request_id or '-'} user={user_id if user_id is not None else '-'}]"

        line = f"{color}{ts} {record.levelname:<8}{self.RESET}{ctx} {record.name}: {record.getMessage()}"

        scope = {("code" if k == "evidence_code" else k): v for k, v in _scope(record).items()}
        if scope:
            line += "  " + " ".join(f"{k}={v}" for k, v in scope.items())
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Set up logging for the Flask app.

    Development / testing → ReadableFormatter on stderr
    Production            → JSONFormatter on stderr
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = str(app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG"))
    level = getattr(logging, level_name.upper(), logging.INFO)

    # Single root handler; cleared first so repeated app creation in tests
    # does not stack handlers.
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
