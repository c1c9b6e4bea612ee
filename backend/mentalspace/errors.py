"""Error taxonomy and the JSON error envelope.

Every request-level failure is an :class:`ApiError` subclass.  Each kind
carries only the attributes it needs and renders them into the ``details``
object of the envelope; the request-scoped envelope fields (``path``,
``method``, ``requestId``) are added by the responder in
:mod:`mentalspace.middleware`, not by the code that raises.

Envelope shape::

    {
      "status": "error",
      "message": "...",
      "code": "FORBIDDEN",
      "details": {...},            # optional
      "timestamp": "2026-10-19T08:15:00.123456+00:00",
      "path": "/api/admin/users",
      "method": "GET",
      "requestId": "5b0c..."
    }
"""

from __future__ import annotations

__all__ = [
    "ErrorCode",
    "ERROR_STATUS_MAP",
    "ApiError",
    "UnauthorizedError",
    "InvalidCredentialsError",
    "SessionExpiredError",
    "ForbiddenError",
    "InsufficientPermissionsError",
    "ResourceNotFoundError",
    "RouteNotFoundError",
    "MethodNotAllowedError",
    "FieldError",
    "ValidationFailedError",
    "BusinessRuleError",
    "ResourceExistsError",
    "RateLimitExceededError",
    "InternalError",
    "ErrorEnvelope",
]

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    # Authentication
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    # Authorization
    FORBIDDEN = "FORBIDDEN"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    # Resources
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_EXISTS = "RESOURCE_EXISTS"
    # Requests
    VALIDATION_ERROR = "VALIDATION_ERROR"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    # Server
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Map ErrorCode → default HTTP status code
ERROR_STATUS_MAP: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INSUFFICIENT_PERMISSIONS: 403,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.ROUTE_NOT_FOUND: 404,
    ErrorCode.METHOD_NOT_ALLOWED: 405,
    ErrorCode.RESOURCE_EXISTS: 409,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.BUSINESS_RULE_VIOLATION: 400,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.INTERNAL_ERROR: 500,
}


class ApiError(Exception):
    """Structured request-level error that maps to a JSON error envelope."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | None = None,
        status_code: int | None = None,
        source: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if code is not None:
            self.code = code
        self._status_code = status_code
        self.source = source
        self.timestamp = datetime.now(timezone.utc)

    @property
    def status_code(self) -> int:
        if self._status_code is not None:
            return self._status_code
        return ERROR_STATUS_MAP.get(self.code, 500)

    @property
    def details(self) -> dict[str, Any] | None:
        """Kind-specific details rendered into the envelope (None = omitted)."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


# ── Authentication (401) ────────────────────────────────────────


class UnauthorizedError(ApiError):
    code = ErrorCode.UNAUTHORIZED
    default_message = "Authentication required"


class InvalidCredentialsError(UnauthorizedError):
    code = ErrorCode.INVALID_CREDENTIALS
    default_message = "Invalid username or password"


class SessionExpiredError(UnauthorizedError):
    code = ErrorCode.SESSION_EXPIRED
    default_message = "Your session has expired, please log in again"


# ── Authorization (403) ─────────────────────────────────────────


class ForbiddenError(ApiError):
    code = ErrorCode.FORBIDDEN
    default_message = "You do not have permission to perform this action"

    def __init__(
        self,
        message: str | None = None,
        *,
        required_roles: Sequence[str] | None = None,
        minimum_role: str | None = None,
        actual_role: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.required_roles = list(required_roles) if required_roles is not None else None
        self.minimum_role = minimum_role
        self.actual_role = actual_role

    @property
    def details(self) -> dict[str, Any] | None:
        out: dict[str, Any] = {}
        if self.required_roles is not None:
            out["requiredRoles"] = self.required_roles
        if self.minimum_role is not None:
            out["minimumRole"] = self.minimum_role
        if self.actual_role is not None:
            out["userRole"] = self.actual_role
        return out or None


class InsufficientPermissionsError(ForbiddenError):
    code = ErrorCode.INSUFFICIENT_PERMISSIONS
    default_message = "You do not have sufficient permissions for this resource"


# ── Resources ───────────────────────────────────────────────────


class ResourceNotFoundError(ApiError):
    code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, resource_type: str, identifier: str | int | None = None, **kwargs: Any) -> None:
        if identifier is not None:
            message = f"{resource_type} with identifier '{identifier}' was not found"
        else:
            message = f"{resource_type} not found"
        super().__init__(message, **kwargs)
        self.resource_type = resource_type
        self.identifier = identifier


class RouteNotFoundError(ApiError):
    code = ErrorCode.ROUTE_NOT_FOUND

    def __init__(self, method: str, path: str) -> None:
        super().__init__(f"Route not found: {method} {path}", source="router")


class MethodNotAllowedError(ApiError):
    code = ErrorCode.METHOD_NOT_ALLOWED

    def __init__(self, method: str, path: str) -> None:
        super().__init__(f"Method {method} is not allowed on {path}", source="router")


class ResourceExistsError(ApiError):
    code = ErrorCode.RESOURCE_EXISTS

    def __init__(self, resource_type: str, field: str | None = None, **kwargs: Any) -> None:
        if field:
            message = f"A {resource_type.lower()} with this {field} already exists"
        else:
            message = f"{resource_type} already exists"
        super().__init__(message, **kwargs)
        self.resource_type = resource_type
        self.field = field

    @property
    def details(self) -> dict[str, Any] | None:
        out: dict[str, Any] = {"resource": self.resource_type}
        if self.field:
            out["field"] = self.field
        return out


# ── Request errors (400 / 429) ──────────────────────────────────


@dataclass(frozen=True)
class FieldError:
    """One invalid field: ``path`` is the key path inside ``target``."""

    path: tuple[str | int, ...]
    message: str
    code: str | None = None
    target: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"path": list(self.path), "message": self.message}
        if self.code is not None:
            out["code"] = self.code
        if self.target is not None:
            out["target"] = self.target
        return out


class ValidationFailedError(ApiError):
    """Request data failed validation; carries every violation, not just the first."""

    code = ErrorCode.VALIDATION_ERROR
    default_message = "Validation failed"

    def __init__(self, errors: Sequence[FieldError], message: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, source="validation", **kwargs)
        self.errors = list(errors)

    @property
    def details(self) -> dict[str, Any] | None:
        return {"errors": [e.as_dict() for e in self.errors]}


class BusinessRuleError(ApiError):
    code = ErrorCode.BUSINESS_RULE_VIOLATION
    default_message = "The requested operation is not allowed"

    def __init__(self, message: str | None = None, *, rule: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.rule = rule

    @property
    def details(self) -> dict[str, Any] | None:
        return {"rule": self.rule} if self.rule else None


class RateLimitExceededError(ApiError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    default_message = "Rate limit exceeded, please try again later"

    def __init__(self, message: str | None = None, *, retry_after: float | None = None, **kwargs: Any) -> None:
        super().__init__(message, source="rate-limiter", **kwargs)
        self.retry_after = retry_after

    @property
    def details(self) -> dict[str, Any] | None:
        if self.retry_after is None:
            return None
        return {"retryAfterSeconds": round(self.retry_after, 1)}


# ── Server (500) ────────────────────────────────────────────────


class InternalError(ApiError):
    code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str | None = None, *, original_error: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.original_error = original_error

    @classmethod
    def from_exception(cls, exc: BaseException, *, expose: bool = False) -> "InternalError":
        """Wrap an unclassified exception.

        Only the exception class name is recorded unless *expose* is set, in
        which case the message is appended.
        """
        original = type(exc).__name__
        if expose and str(exc):
            original = f"{original}: {exc}"
        return cls(original_error=original, source="server")

    @property
    def details(self) -> dict[str, Any] | None:
        if self.original_error is None:
            return None
        return {"originalError": self.original_error}


# ── Envelope ────────────────────────────────────────────────────


class ErrorEnvelope(BaseModel):
    """Serialisable envelope for all error responses."""

    status: str = "error"
    message: str
    code: str
    details: dict[str, Any] | None = None
    timestamp: str
    path: str
    method: str
    request_id: str = Field(alias="requestId")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_api_error(cls, exc: ApiError, *, path: str, method: str, request_id: str) -> "ErrorEnvelope":
        return cls(
            message=exc.message,
            code=exc.code.value,
            details=exc.details,
            timestamp=exc.timestamp.isoformat(),
            path=path,
            method=method,
            request_id=request_id,
        )

    def to_content(self) -> dict[str, Any]:
        content = self.model_dump(by_alias=True)
        if content.get("details") is None:
            content.pop("details", None)
        return content
