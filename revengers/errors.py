"""
Application error hierarchy.

Every error raised by the service layer derives from AppError, which carries
the HTTP status, a stable machine-readable code, and a logging category used
by the error tracker. The API layer maps these to JSON responses in one place
(see revengers.api.error_handlers).
"""

from typing import Dict, List, Optional


class AppError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code = 500
    code = "INTERNAL_ERROR"
    category = "system"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[List[dict]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        self.headers = headers or {}


class ValidationFailed(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    category = "validation"

    def __init__(self, message: str = "Validation Error", details: Optional[List[dict]] = None):
        super().__init__(message, details=details)

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailed":
        return cls(details=[{"field": field, "message": message}])


class InvalidCredentials(AppError):
    status_code = 401
    code = "INVALID_CREDENTIALS"
    category = "authentication"

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class SessionExpired(AppError):
    status_code = 401
    code = "SESSION_EXPIRED"
    category = "authentication"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AccessDenied(AppError):
    status_code = 403
    code = "ACCESS_DENIED"
    category = "authorization"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class CsrfInvalid(AppError):
    status_code = 403
    code = "CSRF_INVALID"
    category = "security"

    def __init__(self, message: str = "Invalid request origin"):
        super().__init__(message)


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
    category = "not_found"

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ConstraintViolation(AppError):
    status_code = 409
    code = "CONSTRAINT_VIOLATION"
    category = "database"

    def __init__(self, message: str = "Conflicting record"):
        super().__init__(message)


class PayloadTooLarge(AppError):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"
    category = "validation"

    def __init__(self, message: str = "Request body too large"):
        super().__init__(message)


class RateLimited(AppError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    category = "security"

    def __init__(self, message: str = "Too many requests, please try again later.", retry_after: int = 60):
        super().__init__(message, headers={"Retry-After": str(max(int(retry_after), 1))})
        self.retry_after = retry_after


class AuthRateLimited(RateLimited):
    code = "AUTH_RATE_LIMIT_EXCEEDED"

    def __init__(self, retry_after: int = 900):
        super().__init__(
            "Too many login attempts, please try again later.", retry_after=retry_after
        )


class ServiceUnavailable(AppError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    category = "system"

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message)


class DatabaseTransientError(ServiceUnavailable):
    """Pool saturation, dropped connections, timeouts. Safe to retry later."""

    category = "database"

    def __init__(self, message: str = "Database temporarily unavailable", code: str = "SERVICE_UNAVAILABLE"):
        super().__init__(message)
        self.code = code


class DatabasePermanentError(AppError):
    category = "database"

    def __init__(self, message: str = "Database error"):
        super().__init__(message)


class StorageError(AppError):
    """Object store failure on the success path of an operation."""

    status_code = 503
    code = "STORAGE_UNAVAILABLE"
    category = "system"
    retriable = False

    def __init__(self, message: str = "Image storage unavailable"):
        super().__init__(message)


class StorageTransientError(StorageError):
    retriable = True


class StoragePermanentError(StorageError):
    retriable = False


class ImageProcessingError(AppError):
    status_code = 500
    code = "IMAGE_PROCESSING_FAILED"
    category = "system"

    def __init__(self, message: str = "Image processing failed"):
        super().__init__(message)
