"""
Exception handlers: the single place errors become HTTP responses.

Body shape: {error, code, correlationId, details?, stack?}; ``stack`` only in
development. Every handled error is counted by the error tracker.
"""

import logging
import traceback
from typing import Iterable, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from revengers.api.middleware import CORRELATION_HEADER, security_headers
from revengers.config import settings
from revengers.errors import AppError, RateLimited, StorageError, ValidationFailed
from revengers.logging_config import get_correlation_id
from revengers.services.error_tracking_service import get_error_tracker

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "SESSION_EXPIRED",
    403: "ACCESS_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    429: "RATE_LIMIT_EXCEEDED",
    503: "SERVICE_UNAVAILABLE",
}


def field_errors(errors: Iterable[dict]) -> List[dict]:
    """
    Flatten pydantic error dicts into [{field, message}].

    The request-part prefix ("body", "query", "path") is dropped from the
    location and pydantic's "Value error, " prefix from the message.
    """
    details = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "form")]
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        details.append({"field": ".".join(loc) or "body", "message": message})
    return details


def validation_failed_from(exc: ValidationError) -> ValidationFailed:
    return ValidationFailed(details=field_errors(exc.errors()))


def json_error(
    status_code: int,
    code: str,
    message: str,
    details: Optional[list] = None,
    headers: Optional[dict] = None,
    exc: Optional[BaseException] = None,
) -> JSONResponse:
    body = {"error": message, "code": code, "correlationId": get_correlation_id()}
    if details:
        body["details"] = details
    if exc is not None and settings.is_development:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    get_error_tracker().track(exc, request)
    details = exc.details
    if details is None and isinstance(exc, StorageError):
        details = [{"retriable": exc.retriable}]
    return json_error(
        exc.status_code, exc.code, exc.message, details=details, headers=exc.headers, exc=exc
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    failed = ValidationFailed(details=field_errors(exc.errors()))
    get_error_tracker().track(failed, request)
    return json_error(400, failed.code, failed.message, details=failed.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "BAD_REQUEST")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404:
        message = "Not found"
    if exc.status_code >= 500:
        get_error_tracker().track(exc, request)
    else:
        tracked = AppError(message, code=code, status_code=exc.status_code)
        tracked.category = "not_found" if exc.status_code == 404 else "validation"
        get_error_tracker().track(tracked, request)
    return json_error(exc.status_code, code, message, headers=getattr(exc, "headers", None))


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = settings.rate_limit_window_seconds
    limit = getattr(exc, "limit", None)
    if limit is not None:
        try:
            retry_after = int(limit.limit.get_expiry())
        except AttributeError:
            pass
    return await app_error_handler(request, RateLimited(retry_after=retry_after))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    get_error_tracker().track(exc, request)
    # Runs outside the edge middleware, so edge headers are added here
    headers = {CORRELATION_HEADER: get_correlation_id(), **security_headers()}
    return json_error(500, "INTERNAL_ERROR", "Internal server error", headers=headers, exc=exc)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
