"""Admin login, logout and session status."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from pydantic import ValidationError

from revengers.api.auth_dependencies import (
    client_ip,
    get_gateway,
    get_session,
    get_session_manager,
    set_no_cache,
)
from revengers.api.error_handlers import validation_failed_from
from revengers.database.gateway import StorageGateway
from revengers.errors import AppError, InvalidCredentials, ServiceUnavailable, ValidationFailed
from revengers.logging_config import log_security_event
from revengers.models.schemas import AdminLoginRequest, AuthStatusResponse, LoginResponse, MessageResponse
from revengers.services import auth_service, rate_limiting_service
from revengers.services.session_service import SessionContext, SessionManager

logger = logging.getLogger(__name__)
router = APIRouter()


async def _parse_login(request: Request) -> AdminLoginRequest:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationFailed.for_field("body", "Request body must be valid JSON")
    try:
        return AdminLoginRequest.model_validate(body)
    except ValidationError as e:
        raise validation_failed_from(e)


@router.post("/api/admin/login", response_model=LoginResponse)
async def login(
    request: Request,
    response: Response,
    session: SessionContext = Depends(get_session),
    gateway: StorageGateway = Depends(get_gateway),
    manager: SessionManager = Depends(get_session_manager),
):
    """
    Log an admin in.

    Only failed attempts (400/401) count toward the per-IP login limit. The
    session id is rotated on success.
    """
    ip = client_ip(request)
    set_no_cache(response)
    slot = rate_limiting_service.reserve_login_attempt(ip)
    failed = False
    try:
        try:
            payload = await _parse_login(request)
        except ValidationFailed:
            failed = True
            raise

        logger.info(f"Admin login attempt for '{payload.username}' from {ip}")
        admin = await auth_service.authenticate(gateway, payload.username, payload.password)
        if admin is None:
            failed = True
            log_security_event(
                "FAILED_LOGIN",
                username=payload.username,
                ip=ip,
                userAgent=request.headers.get("user-agent"),
                failures=rate_limiting_service.failure_count(ip),
            )
            raise InvalidCredentials()

        if not session.store_available:
            logger.error(f"Session store unavailable during login for '{payload.username}'")
            raise ServiceUnavailable("Session store unavailable")

        session.login(admin["id"])
        try:
            await manager.save(session)
        except AppError as e:
            logger.error(f"Could not persist admin session: {e}")
            raise ServiceUnavailable("Session store unavailable")

        await auth_service.record_login(gateway, admin["id"])
        logger.info(f"Admin login successful for '{admin['username']}' (id {admin['id']}) from {ip}")
        return {"message": "Logged in successfully", "admin": admin}
    finally:
        # Only bad input and wrong credentials keep the slot
        if not failed:
            rate_limiting_service.release_login_attempt(ip, slot)


@router.post("/api/admin/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    session: SessionContext = Depends(get_session),
):
    """Destroy the session and clear its cookie."""
    admin_id = session.admin_id
    session.destroy()
    set_no_cache(response)
    if admin_id is not None:
        logger.info(f"Admin {admin_id} logged out from {client_ip(request)}")
    return {"message": "Logged out successfully"}


@router.get(
    "/api/admin/status",
    response_model=AuthStatusResponse,
    response_model_exclude_none=True,
)
async def status(response: Response, session: SessionContext = Depends(get_session)):
    """Report whether the caller holds an admin session."""
    set_no_cache(response)
    if not session.is_admin:
        return AuthStatusResponse(logged_in=False)
    return AuthStatusResponse(
        logged_in=True, admin_id=session.admin_id, login_time=session.login_time
    )
