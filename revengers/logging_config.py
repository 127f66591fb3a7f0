"""
Logging setup shared by the API process.

Adds the request correlation id to every log record and configures the
dedicated ``security`` and ``access`` loggers.
"""

import json
import logging
from contextvars import ContextVar
from typing import Optional

from revengers.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s"

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")

security_logger = logging.getLogger("security")
access_logger = logging.getLogger("access")

_configured = False


def get_correlation_id() -> str:
    return correlation_id_var.get()


class CorrelationIdFilter(logging.Filter):
    """Stamp the current request's correlation id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging once per process.

    Args:
        level: Log level name; defaults to LOG_LEVEL from settings
    """
    global _configured
    if _configured:
        return

    level_name = (level or settings.log_level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)

    correlation_filter = CorrelationIdFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(correlation_filter)

    # Security events get their own stream in addition to the root handlers
    security_path = settings.security_log_file
    if security_path:
        file_handler = logging.FileHandler(security_path)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.addFilter(correlation_filter)
        security_logger.addHandler(file_handler)
    security_logger.setLevel(logging.INFO)

    access_logger.setLevel(logging.INFO)
    _configured = True


def log_security_event(event: str, **details) -> None:
    """
    Record a security-relevant event on the security stream.

    Args:
        event: Short event name, e.g. "FAILED_LOGIN"
        **details: JSON-serializable context (ip, path, username, ...)
    """
    payload = {"event": event, "correlationId": correlation_id_var.get(), **details}
    security_logger.warning(json.dumps(payload, default=str))
