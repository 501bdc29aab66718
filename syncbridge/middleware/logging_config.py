"""
Logging setup for SyncBridge.

Debug/testing builds get a compact single-line console format; everything
else emits one JSON object per record for the log shipper.  A redaction
filter sits on the handler so credential-shaped values (api keys, secrets,
bearer tokens) are masked even if a caller passes them as ``extra``.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone

REDACTED = "***"

# Context keys copied out of ``extra=`` when present.
CONTEXT_FIELDS = (
    "tenant_id",
    "platform",
    "config_id",
    "entry_id",
    "entity_type",
    "entity_id",
    "status",
    "circuit_state",
)

_SECRET_ATTRS = ("api_key", "api_secret", "signing_secret", "authorization")
_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE)


class SecretRedactionFilter(logging.Filter):
    """Mask credential values on a record before any formatter sees it."""

    def filter(self, record):
        for attr in _SECRET_ATTRS:
            if getattr(record, attr, None):
                setattr(record, attr, REDACTED)
        if isinstance(record.msg, str) and "bearer" in record.msg.lower():
            record.msg = _BEARER_RE.sub(rf"\1{REDACTED}", record.msg)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [k=v ...]`` with level colouring."""

    _COLOURS = {"WARNING": "\033[33m", "ERROR": "\033[31m", "CRITICAL": "\033[35m"}

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = record.levelname
        colour = self._COLOURS.get(level)
        if colour:
            level = f"{colour}{level}\033[0m"
        context = " ".join(
            f"{name}={getattr(record, name)}"
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        line = f"{stamp} {level} {record.name}: {record.getMessage()}"
        if context:
            line = f"{line} [{context}]"
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``."""
    testing = app.config.get("TESTING", False)
    structured = not (app.config.get("DEBUG", False) or testing)

    level_name = str(app.config.get("LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if structured else ConsoleFormatter())
    handler.addFilter(SecretRedactionFilter())

    root = logging.getLogger()
    # create_app runs more than once per test session
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for chatty in ("urllib3", "werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(chatty).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("logging ready (level=%s, json=%s)", level_name, structured)
