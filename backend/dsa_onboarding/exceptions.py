"""
DSA Onboarding Backend — Error Taxonomy
=========================================

What:  Operational errors carrying (message, status_code, code, is_operational)
       plus the translation of library failures into that taxonomy.
How:   Services and dependencies raise ApiError subclasses. The handlers in
       main.py turn any exception into `{success: false, error, code, ...}`
       via translate_exception().
Who:   Raised by services, dependencies and middleware; caught by global handlers.

Exception Hierarchy:
    ApiError (base)
    ├── BadRequestError          → 400 BAD_REQUEST
    ├── UnauthorizedError        → 401 UNAUTHORIZED / NO_TOKEN / INVALID_TOKEN / TOKEN_EXPIRED / OTP_*
    ├── ForbiddenError           → 403 FORBIDDEN
    ├── NotFoundError            → 404 NOT_FOUND
    ├── ConflictError            → 409 CONFLICT / DUPLICATE_ERROR
    ├── ValidationError          → 422 VALIDATION_ERROR
    ├── TooManyRequestsError     → 429 RATE_LIMIT_EXCEEDED / OTP_RATE_LIMIT
    ├── InternalError            → 500 INTERNAL_ERROR (non-operational)
    └── ServiceUnavailableError  → 503 PROVIDER_UNAVAILABLE / CIRCUIT_OPEN
        ├── ProviderError
        └── CircuitBreakerOpenError

    FileStorageError is an InternalError raised by the file service.
    MalformedIdError is a plain ValueError; translate_exception() maps it
    to 400 INVALID_ID.
"""

from typing import Any, Dict, List, Optional

import jwt
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError


class ApiError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:        User-facing error description (safe to return)
        status_code:    HTTP status
        code:           Machine-readable error code
        is_operational: False for defects; those are always logged with a traceback
        details:        Optional list of field-level problems
        headers:        Extra response headers (Retry-After, RateLimit-*)
        extra:          Extra top-level keys merged into the error body
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        is_operational: bool = True,
        details: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.is_operational = is_operational
        self.details = details
        self.headers = headers or {}
        self.extra = extra or {}
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class BadRequestError(ApiError):
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str = "Bad request", code: Optional[str] = None, **kwargs):
        super().__init__(message, code=code, **kwargs)


class UnauthorizedError(ApiError):
    """
    Credential missing, invalid, expired, or OTP locked out.

    The code distinguishes the cause so the frontend can decide between
    refreshing the access token and sending the user back to login.
    """

    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", code: Optional[str] = None, **kwargs):
        super().__init__(message, code=code, **kwargs)


class ForbiddenError(ApiError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden", code: Optional[str] = None, **kwargs):
        super().__init__(message, code=code, **kwargs)


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found", code: Optional[str] = None, **kwargs):
        super().__init__(message, code=code, **kwargs)


class ConflictError(ApiError):
    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str = "Resource already exists", code: Optional[str] = None, **kwargs):
        super().__init__(message, code=code, **kwargs)


class ValidationError(ApiError):
    status_code = 422
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation failed", code: Optional[str] = None, **kwargs):
        super().__init__(message, code=code, **kwargs)


class TooManyRequestsError(ApiError):
    """
    Raised by a rate limiter once a window quota is exceeded.

    retry_after (seconds until the window resets) is always sent as the
    Retry-After header; tiers that want it in the body pass it via `extra`.
    """

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str = "Too many requests. Please try again later.",
        code: Optional[str] = None,
        retry_after: int = 60,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ):
        merged = dict(headers or {})
        merged["Retry-After"] = str(retry_after)
        super().__init__(message, code=code, headers=merged, **kwargs)
        self.retry_after = retry_after


class InternalError(ApiError):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error", code: Optional[str] = None, **kwargs):
        kwargs.setdefault("is_operational", False)
        super().__init__(message, code=code, **kwargs)


class FileStorageError(InternalError):
    """
    Raised when file system operations fail.

    The message returned to the client is generic; the OS error is logged.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code="FILE_STORAGE_ERROR")
        self.context = context or {}


class ServiceUnavailableError(ApiError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service temporarily unavailable", code: Optional[str] = None, **kwargs):
        super().__init__(message, code=code, **kwargs)


class ProviderError(ServiceUnavailableError):
    """
    Raised when the KYC provider fails after all retries.

    retry_after is sent as a Retry-After header when known.
    """

    def __init__(
        self,
        message: str = "Verification service is temporarily unavailable. Please try again later.",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(message, code="PROVIDER_UNAVAILABLE", headers=headers)
        self.retry_after = retry_after
        self.context = context or {}


class CircuitBreakerOpenError(ServiceUnavailableError):
    """
    Raised when the provider circuit breaker is OPEN.

    CLOSED → failures reach threshold → OPEN (reject instantly)
    → recovery timeout → HALF_OPEN (one trial call) → CLOSED or OPEN again
    """

    def __init__(self, recovery_time: int = 60):
        message = (
            "Verification service is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        super().__init__(
            message,
            code="CIRCUIT_OPEN",
            headers={"Retry-After": str(recovery_time)},
        )
        self.recovery_time = recovery_time


class MalformedIdError(ValueError):
    """A path identifier that is not a 24-character hex id."""

    def __init__(self, value: str):
        super().__init__(f"Malformed id: {value!r}")
        self.value = value


# ══════════════════════════════════════════════════════════════════════════
# Translation Layer
# ══════════════════════════════════════════════════════════════════════════

def pydantic_details(exc: PydanticValidationError) -> List[Dict[str, str]]:
    """Flattens pydantic errors into [{field, message}]."""
    details = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())) or "body"
        details.append({"field": field, "message": err.get("msg", "Invalid value")})
    return details


def translate_exception(exc: Exception) -> ApiError:
    """
    Map any exception onto the taxonomy.

    ApiError instances pass through unchanged. Persistence and token-library
    failures get their dedicated codes; everything else becomes a
    non-operational InternalError with a generic message.
    """
    if isinstance(exc, ApiError):
        return exc

    if isinstance(exc, IntegrityError):
        return ConflictError("Duplicate value. This record already exists.", code="DUPLICATE_ERROR")

    if isinstance(exc, PydanticValidationError):
        details = pydantic_details(exc)
        return BadRequestError(
            ", ".join(d["message"] for d in details) or "Validation failed",
            code="VALIDATION_ERROR",
            details=details,
        )

    if isinstance(exc, MalformedIdError):
        return BadRequestError("Invalid ID format", code="INVALID_ID")

    # ExpiredSignatureError subclasses InvalidTokenError, so check it first
    if isinstance(exc, jwt.ExpiredSignatureError):
        return UnauthorizedError("Token expired. Please refresh your token.", code="TOKEN_EXPIRED")

    if isinstance(exc, jwt.InvalidTokenError):
        return UnauthorizedError("Invalid token.", code="INVALID_TOKEN")

    return InternalError()
