"""
Structured logging configuration.

JSON-formatted logs in production so webhook outcomes can be parsed and
aggregated; plain text with trailing key=value context during local
development. Structured context is passed as extra={"extra_fields": {...}}.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict
from core.config import settings

# Never emitted, whatever a caller puts in extra_fields
REDACTED_FIELDS = {"access_token", "refresh_token", "signature", "terra-signature", "x-whoop-signature", "authorization"}


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    fields = getattr(record, "extra_fields", None)
    if not isinstance(fields, dict):
        return {}
    return {k: ("[redacted]" if k.lower() in REDACTED_FIELDS else v) for k, v in fields.items()}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        log_data.update(_context(record))
        return json.dumps(log_data, default=str)


class ContextTextFormatter(logging.Formatter):
    """Human-readable line with structured context appended as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if context:
            line += " | " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


def setup_logging():
    """
    Configure application-wide logging.

    JSON when LOG_FORMAT is "json" or in production; text otherwise.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = ContextTextFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name, level in (("sqlalchemy.engine", logging.WARNING), ("urllib3", logging.WARNING), ("celery", logging.INFO)):
        logging.getLogger(name).setLevel(level)

    return root_logger


# Initialize logging on import
setup_logging()
