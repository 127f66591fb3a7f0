"""
Authentication dependencies for FastAPI routes.
"""

import logging

from fastapi import Depends, Request, Response

from revengers.config import settings
from revengers.database.gateway import StorageGateway
from revengers.errors import CsrfInvalid, ServiceUnavailable, SessionExpired
from revengers.logging_config import log_security_event
from revengers.services.session_service import (
    AnonymousSession,
    SessionContext,
    SessionManager,
    new_session_id,
)

logger = logging.getLogger(__name__)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def get_gateway(request: Request) -> StorageGateway:
    """
    Dependency returning the storage gateway created at startup.

    Raises:
        ServiceUnavailable: If the database was never connected
    """
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise ServiceUnavailable("Database unavailable")
    return gateway


def get_session_manager(request: Request) -> SessionManager:
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise ServiceUnavailable("Session store unavailable")
    return manager


def get_session(request: Request) -> SessionContext:
    """The session resolved by SessionMiddleware for this request."""
    session = getattr(request.state, "session", None)
    if session is None:
        return SessionContext(
            sid=new_session_id(), state=AnonymousSession(), is_new=True, store_available=False
        )
    return session


def set_no_cache(response: Response) -> None:
    for name, value in NO_CACHE_HEADERS.items():
        response.headers[name] = value


def check_same_origin(request: Request) -> None:
    """
    In production, reject mutating requests whose Origin is not the site.

    Raises:
        CsrfInvalid: Origin header present and different from PRODUCTION_URL
    """
    if not settings.is_production or request.method in SAFE_METHODS:
        return
    origin = request.headers.get("origin")
    if origin and origin.rstrip("/") != settings.production_url:
        log_security_event(
            "CSRF_ORIGIN_MISMATCH",
            origin=origin,
            method=request.method,
            path=request.url.path,
            ip=client_ip(request),
        )
        raise CsrfInvalid()


async def require_admin(
    request: Request,
    response: Response,
    session: SessionContext = Depends(get_session),
) -> SessionContext:
    """
    Dependency admitting only admin sessions.

    Returns:
        The admin SessionContext

    Raises:
        ServiceUnavailable: The session store is down
        SessionExpired: No admin session (the session is destroyed)
        CsrfInvalid: Cross-origin mutating request in production
    """
    if not session.store_available:
        raise ServiceUnavailable("Session store unavailable")

    if not session.is_admin:
        session.destroy()
        log_security_event(
            "UNAUTHORIZED_ACCESS",
            method=request.method,
            path=request.url.path,
            ip=client_ip(request),
            userAgent=request.headers.get("user-agent"),
        )
        raise SessionExpired()

    check_same_origin(request)
    set_no_cache(response)
    return session
