"""
Tests for error_tracking_service: fingerprints, counts and alerts.
"""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
from starlette.requests import Request

from revengers.api.error_handlers import rate_limit_exceeded_handler
from revengers.errors import CsrfInvalid, NotFound, RateLimited, ValidationFailed
from revengers.logging_config import LOG_FORMAT, CorrelationIdFilter, correlation_id_var
from revengers.services import error_tracking_service
from revengers.services.error_tracking_service import ErrorTracker, get_error_tracker


def _raised(error):
    """Return ``error`` with a real traceback attached."""
    try:
        raise error
    except Exception as e:
        return e


class TestFingerprint:
    def test_same_error_same_fingerprint(self):
        tracker = ErrorTracker()
        first = tracker.track(NotFound("Player not found"))
        second = tracker.track(NotFound("Player not found"))
        assert first == second
        assert len(first) == 16

    def test_different_messages_differ(self):
        tracker = ErrorTracker()
        assert tracker.track(NotFound("Player not found")) != tracker.track(NotFound("Trophy not found"))

    def test_categories(self):
        assert error_tracking_service.categorize(ValidationFailed()) == "validation"
        assert error_tracking_service.categorize(CsrfInvalid()) == "security"
        assert error_tracking_service.categorize(KeyError("x")) == "system"
        assert error_tracking_service.categorize(NotFound()) == "not_found"


class TestErrorTracker:
    def test_stats(self):
        tracker = ErrorTracker()
        for _ in range(3):
            tracker.track(NotFound("Player not found"))
        tracker.track(_raised(RuntimeError("boom")))

        stats = tracker.stats()
        assert stats["total"] == 4
        assert stats["uniqueInWindow"] == 2
        assert stats["top"][0]["count"] == 3
        assert stats["top"][0]["message"] == "Player not found"

    def test_high_frequency_alert_fires_once_at_threshold(self):
        tracker = ErrorTracker(alert_threshold=3)
        with patch.object(error_tracking_service.logger, "error") as mock_error:
            for _ in range(5):
                tracker.track(NotFound("Player not found"))
        alerts = [c for c in mock_error.call_args_list if "HIGH_FREQUENCY_ERROR" in c.args[0]]
        assert len(alerts) == 1

    def test_security_errors_reach_security_log(self):
        tracker = ErrorTracker()
        with patch.object(error_tracking_service, "log_security_event") as mock_event:
            tracker.track(CsrfInvalid())
        mock_event.assert_called_once()
        assert mock_event.call_args.args[0] == "SECURITY_INCIDENT"

    def test_window_reset(self):
        tracker = ErrorTracker(window_seconds=0)
        tracker.track(NotFound("Player not found"))
        assert tracker.stats()["uniqueInWindow"] == 0
        assert tracker.stats()["total"] == 1

    def test_reset(self):
        tracker = ErrorTracker()
        tracker.track(NotFound("Player not found"))
        tracker.reset()
        assert tracker.stats() == {"total": 0, "uniqueInWindow": 0, "top": []}


class _Capture(logging.Handler):
    """Collects formatted lines the way the root handler would render them."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.lines = []
        self.setFormatter(logging.Formatter(LOG_FORMAT))
        self.addFilter(CorrelationIdFilter())

    def emit(self, record):
        self.lines.append(self.format(record))


def _request(path="/api/players/9", method="PATCH"):
    return Request({
        "type": "http",
        "method": method,
        "path": path,
        "headers": [(b"user-agent", b"Mozilla/5.0")],
        "query_string": b"",
        "client": ("203.0.113.7", 5000),
    })


@pytest.fixture
def captured():
    handler = _Capture()
    logger = error_tracking_service.logger
    previous_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    token = correlation_id_var.set("trace-0042")
    yield handler.lines
    correlation_id_var.reset(token)
    logger.setLevel(previous_level)
    logger.removeHandler(handler)


class TestLoggedContext:
    def test_formatted_line_carries_request_context(self, captured):
        ErrorTracker().track(NotFound("Player not found"), _request())

        line = captured[0]
        assert "[trace-0042]" in line
        context = json.loads(line[line.index("{"):])
        assert context == {
            "correlationId": "trace-0042",
            "method": "PATCH",
            "path": "/api/players/9",
            "ip": "203.0.113.7",
            "userAgent": "Mozilla/5.0",
            "adminId": None,
        }

    def test_without_request(self, captured):
        ErrorTracker().track(ValidationFailed())
        assert '{"correlationId": "trace-0042"}' in captured[0]


class TestHandlersTrackErrors:
    @pytest.mark.asyncio
    async def test_general_rate_limit_is_tracked(self):
        exc = MagicMock()
        exc.limit.limit.get_expiry.return_value = 60

        with patch.object(ErrorTracker, "track") as mock_track:
            response = await rate_limit_exceeded_handler(_request("/api/players", "GET"), exc)

        assert response.status_code == 429
        assert response.headers["retry-after"] == "60"
        assert isinstance(mock_track.call_args.args[0], RateLimited)

    def test_unknown_route_is_tracked(self, client):
        response = client.get("/api/nope")

        assert response.status_code == 404
        stats = get_error_tracker().stats()
        assert stats["total"] == 1
        assert stats["top"][0]["message"] == "Not found"
