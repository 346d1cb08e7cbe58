"""AuthCore Logging Configuration.

Log lines must never carry credentials. Call sites redact emails
themselves (``redact_email``); ``SecretScrubFilter`` is the backstop that
masks anything token-shaped before a record reaches a handler.
"""

import json
import logging
import re
import sys
from typing import Literal

# Human-readable format for development
DEV_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Attributes passed via ``extra=`` that the JSON formatter copies through
CONTEXT_FIELDS = ("user_id", "event", "actor_ip", "path")

_JWT_RE = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]+")
_BEARER_RE = re.compile(r"(?i)\bbearer\s+\S+")

NOISY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "aiosmtplib")


def scrub_secrets(message: str) -> str:
    """Mask JWTs and bearer credentials in a log message."""
    message = _BEARER_RE.sub("Bearer [REDACTED]", message)
    return _JWT_RE.sub("[REDACTED JWT]", message)


class SecretScrubFilter(logging.Filter):
    """Rewrites each record's message with ``scrub_secrets`` applied."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = scrub_secrets(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter that properly escapes all fields.

    Unlike a simple %-format string inside a JSON template, this formatter
    uses json.dumps() to escape special characters (quotes, backslashes,
    newlines) in log messages, preventing malformed JSON output.
    """

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(
    level: str = "INFO",
    format_type: Literal["structured", "dev"] = "dev",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format - 'structured' for JSON, 'dev' for readable
    """
    handler = logging.StreamHandler(sys.stdout)
    if format_type == "structured":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(DEV_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(SecretScrubFilter())

    logging.root.handlers = [handler]
    logging.root.setLevel(getattr(logging, level.upper()))

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    # Keep SQLAlchemy quiet unless debugging
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING
    )

    logging.getLogger("authcore").info(f"Logging configured: level={level}, format={format_type}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the authcore prefix."""
    return logging.getLogger(f"authcore.{name}")


def redact_email(email: str | None) -> str:
    """Keep the first two characters of the local part and the domain."""
    if not email or "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"
