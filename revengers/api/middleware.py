"""
ASGI middleware for the HTTP edge.

Each class wraps the downstream app directly (no BaseHTTPMiddleware) and
edits responses in its ``send`` wrapper when ``http.response.start`` passes
through.
"""

import json
import logging
import re
import secrets
import time
from email.utils import format_datetime
from typing import Callable, Dict, Optional

from fastapi import Request
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection
from starlette.responses import JSONResponse

from revengers.config import settings
from revengers.logging_config import access_logger, correlation_id_var, log_security_event
from revengers.services import s3_service
from revengers.services.session_service import (
    AnonymousSession,
    SessionContext,
    SessionManager,
    new_session_id,
)
from revengers.services.validation_service import detect_suspicious_request

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9-]{8,64}$")


def new_correlation_id() -> str:
    return secrets.token_hex(8)


def resolve_correlation_id(header_value: Optional[str]) -> str:
    """Accept a well-formed inbound id, otherwise mint a new one."""
    if header_value and _VALID_CORRELATION_ID.match(header_value):
        return header_value
    return new_correlation_id()


class CorrelationIdMiddleware:
    """Assign the request's correlation id and echo it on the response."""

    def __init__(self, app: Callable) -> None:
        self.app = app

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = HTTPConnection(scope).headers
        correlation_id = resolve_correlation_id(headers.get(CORRELATION_HEADER))
        # Each request runs in its own task, so the value cannot leak across requests
        correlation_id_var.set(correlation_id)
        scope.setdefault("state", {})["correlation_id"] = correlation_id

        async def send_wrapper(message: dict) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[CORRELATION_HEADER] = correlation_id
            await send(message)

        await self.app(scope, receive, send_wrapper)


class AccessLogMiddleware:
    """Log request/response details in JSON and flag suspicious requests."""

    def __init__(self, app: Callable) -> None:
        self.app = app

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        request = Request(scope, receive=receive)
        client_ip = request.client.host if request.client else None

        tags = detect_suspicious_request(
            request.method,
            request.url.path,
            request.url.query,
            {"user-agent": request.headers.get("user-agent", "")},
        )
        if tags - {"suspicious_user_agent"} or (tags and request.url.path.startswith("/api/admin")):
            log_security_event(
                "SUSPICIOUS_REQUEST",
                tags=sorted(tags),
                method=request.method,
                path=request.url.path,
                ip=client_ip,
                userAgent=request.headers.get("user-agent"),
            )

        async def send_wrapper(message: dict) -> None:
            if message["type"] == "http.response.start":
                elapsed_ms = (time.perf_counter() - start) * 1000
                log_payload = {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": message["status"],
                    "client_ip": client_ip,
                    "duration_ms": round(elapsed_ms, 2),
                    "user_agent": request.headers.get("user-agent"),
                    "correlation_id": correlation_id_var.get(),
                }
                access_logger.info(json.dumps(log_payload))
            await send(message)

        await self.app(scope, receive, send_wrapper)


def content_security_policy() -> str:
    extra = " ".join(settings.csp_extra_sources)
    img_sources = ["'self'", "data:"]
    store = settings.object_store
    if store["bucket"] or store["public_url"]:
        img_sources.append(s3_service.public_base_url(store))
    directives = [
        "default-src 'self'",
        f"script-src 'self' {extra}".strip(),
        f"style-src 'self' 'unsafe-inline' {extra}".strip(),
        f"font-src 'self' {extra}".strip(),
        f"img-src {' '.join(img_sources)}",
        "connect-src 'self'",
        "object-src 'none'",
        "frame-ancestors 'none'",
        "base-uri 'self'",
        "form-action 'self'",
    ]
    return "; ".join(directives)


def security_headers() -> Dict[str, str]:
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Content-Security-Policy": content_security_policy(),
    }
    if settings.is_production:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers


class SecurityHeadersMiddleware:
    def __init__(self, app: Callable) -> None:
        self.app = app

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        extra_headers = security_headers()

        async def send_wrapper(message: dict) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in extra_headers.items():
                    if name not in headers:
                        headers[name] = value
            await send(message)

        await self.app(scope, receive, send_wrapper)


def payload_too_large_response() -> JSONResponse:
    return JSONResponse(
        status_code=413,
        content={
            "error": "Request body too large",
            "code": "PAYLOAD_TOO_LARGE",
            "correlationId": correlation_id_var.get(),
        },
    )


class BodySizeLimitMiddleware:
    """
    Reject bodies over MAX_BODY_SIZE_MB with 413.

    A declared Content-Length over the cap is refused before the app runs.
    Streamed bodies are counted as they arrive; once the cap is crossed the
    app sees a disconnect and its response is replaced by the 413.
    """

    def __init__(self, app: Callable, max_body_size: Optional[int] = None) -> None:
        self.app = app
        self._max_body_size = max_body_size

    @property
    def max_body_size(self) -> int:
        return self._max_body_size if self._max_body_size is not None else settings.max_body_size

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = self.max_body_size
        connection = HTTPConnection(scope)
        declared = connection.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            self._log(connection, int(declared), limit)
            await payload_too_large_response()(scope, receive, send)
            return

        received = 0
        exceeded = False
        response_started = False

        async def receive_wrapper() -> dict:
            nonlocal received, exceeded
            if exceeded:
                return {"type": "http.disconnect"}
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    exceeded = True
                    self._log(connection, received, limit)
                    return {"type": "http.disconnect"}
            return message

        async def send_wrapper(message: dict) -> None:
            nonlocal response_started
            if exceeded:
                return
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        except Exception:
            if not exceeded:
                raise
        if exceeded and not response_started:
            await payload_too_large_response()(scope, receive, send)

    @staticmethod
    def _log(connection: HTTPConnection, size: int, limit: int) -> None:
        logger.warning(
            f"Rejected oversize body on {connection.url.path}: {size} bytes (limit {limit})",
            extra={"client_ip": connection.client.host if connection.client else None},
        )


def build_cookie(name: str, value: str, max_age: int, expires=None) -> str:
    parts = [f"{name}={value}", "Path=/", f"Max-Age={max_age}", "HttpOnly"]
    if expires is not None:
        parts.append(f"Expires={format_datetime(expires, usegmt=True)}")
    parts.append("SameSite=Strict" if settings.is_production else "SameSite=Lax")
    if settings.is_production:
        parts.append("Secure")
    return "; ".join(parts)


class SessionMiddleware:
    """
    Resolve the session cookie into ``request.state.session`` and persist it
    when the response starts.

    The SessionManager is read from ``app.state.session_manager`` on each
    request; when it is missing every request gets an unavailable session.
    """

    def __init__(self, app: Callable) -> None:
        self.app = app

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        manager: Optional[SessionManager] = getattr(scope["app"].state, "session_manager", None)
        cookie_name = settings.session_cookie_name
        if manager is None:
            ctx = SessionContext(
                sid=new_session_id(), state=AnonymousSession(), is_new=True, store_available=False
            )
        else:
            ctx = await manager.load(HTTPConnection(scope).cookies.get(cookie_name))
        scope.setdefault("state", {})["session"] = ctx

        async def send_wrapper(message: dict) -> None:
            if message["type"] == "http.response.start" and manager is not None:
                try:
                    await manager.save(ctx)
                except Exception as e:
                    logger.error(f"Failed to persist session: {e}")
                headers = MutableHeaders(scope=message)
                if ctx.destroyed:
                    headers.append("Set-Cookie", build_cookie(cookie_name, "", 0))
                elif ctx.cookie_expires is not None:
                    headers.append(
                        "Set-Cookie",
                        build_cookie(
                            cookie_name,
                            manager.sign(ctx.sid),
                            settings.session_max_age_seconds,
                            ctx.cookie_expires,
                        ),
                    )
            await send(message)

        await self.app(scope, receive, send_wrapper)
