"""
Error tracking: fingerprint, count and log every handled error.

Errors are grouped by a fingerprint of their message, category and top stack
frames. Counts reset every hour; a fingerprint seen 10 times inside the
window raises a HIGH_FREQUENCY_ERROR alert.
"""

import hashlib
import json
import logging
import time
import traceback
from typing import Dict, List, Optional

from fastapi import Request

from revengers.errors import AppError
from revengers.logging_config import get_correlation_id, log_security_event

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 3600
ALERT_THRESHOLD = 10

_LEVEL_BY_CATEGORY = {
    "security": logging.ERROR,
    "database": logging.ERROR,
    "system": logging.ERROR,
    "authentication": logging.WARNING,
    "authorization": logging.WARNING,
    "validation": logging.WARNING,
    "not_found": logging.INFO,
}


def categorize(error: BaseException) -> str:
    if isinstance(error, AppError):
        return error.category
    return "system"


def fingerprint(error: BaseException, category: str) -> str:
    """sha256 over message | category | first three frames, 16 hex chars."""
    frames = traceback.extract_tb(error.__traceback__)[:3] if error.__traceback__ else []
    frame_text = "|".join(f"{f.filename}:{f.name}:{f.lineno}" for f in frames)
    raw = f"{error}|{category}|{frame_text}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def request_context(request: Optional[Request]) -> dict:
    if request is None:
        return {"correlationId": get_correlation_id()}
    session = getattr(request.state, "session", None)
    return {
        "correlationId": get_correlation_id(),
        "method": request.method,
        "path": request.url.path,
        "ip": request.client.host if request.client else None,
        "userAgent": request.headers.get("user-agent"),
        "adminId": session.admin_id if session is not None else None,
    }


class ErrorTracker:
    """In-process error frequency counter."""

    def __init__(self, window_seconds: int = WINDOW_SECONDS, alert_threshold: int = ALERT_THRESHOLD):
        self.window_seconds = window_seconds
        self.alert_threshold = alert_threshold
        self._counts: Dict[str, int] = {}
        self._messages: Dict[str, str] = {}
        self._total = 0
        self._window_started = time.monotonic()

    def _maybe_reset(self) -> None:
        if time.monotonic() - self._window_started >= self.window_seconds:
            self._counts.clear()
            self._messages.clear()
            self._window_started = time.monotonic()

    def track(self, error: BaseException, request: Optional[Request] = None) -> str:
        """
        Record an error occurrence and log it with request context.

        Args:
            error: The exception being handled
            request: The request during which it happened, if any

        Returns:
            The error's fingerprint
        """
        self._maybe_reset()
        category = categorize(error)
        fp = fingerprint(error, category)
        count = self._counts.get(fp, 0) + 1
        self._counts[fp] = count
        self._messages[fp] = str(error)
        self._total += 1

        context = request_context(request)
        level = _LEVEL_BY_CATEGORY.get(category, logging.INFO)
        logger.log(
            level,
            f"{type(error).__name__}: {error} [category={category} fingerprint={fp} count={count}] "
            f"{json.dumps(context, default=str)}",
            exc_info=error if level >= logging.ERROR and not isinstance(error, AppError) else None,
        )

        if count == self.alert_threshold:
            logger.error(
                f"HIGH_FREQUENCY_ERROR fingerprint={fp} occurred {count} times within "
                f"{self.window_seconds // 60} minutes: {error}"
            )
        if category == "security":
            log_security_event("SECURITY_INCIDENT", fingerprint=fp, message=str(error), **context)
        return fp

    def stats(self, top: int = 10) -> dict:
        self._maybe_reset()
        ranked: List[tuple] = sorted(self._counts.items(), key=lambda item: item[1], reverse=True)
        return {
            "total": self._total,
            "uniqueInWindow": len(self._counts),
            "top": [
                {"fingerprint": fp, "count": count, "message": self._messages.get(fp, "")}
                for fp, count in ranked[:top]
            ],
        }

    def reset(self) -> None:
        self._counts.clear()
        self._messages.clear()
        self._total = 0
        self._window_started = time.monotonic()


# Global singleton
_error_tracker = ErrorTracker()


def get_error_tracker() -> ErrorTracker:
    """Get the global error tracker instance."""
    return _error_tracker
