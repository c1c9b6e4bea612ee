"""Request context middleware and the single JSON error responder.

``RequestContextMiddleware`` tags every request with a fresh request id,
logs it, adds the security headers and turns any exception nobody classified
into a 500 envelope.  ``install_error_handlers`` folds every error that can
reach FastAPI's exception middleware (our own :class:`ApiError` kinds, request
validation, router 404/405, database integrity violations) into the same
envelope via :func:`render_error`.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from mentalspace.config import settings
from mentalspace.errors import (
    ApiError,
    BusinessRuleError,
    ErrorCode,
    ErrorEnvelope,
    FieldError,
    InternalError,
    MethodNotAllowedError,
    ResourceExistsError,
    RouteNotFoundError,
    ValidationFailedError,
)
from mentalspace.utils.logger import audit_access, ctx_request_id, ctx_user_id

logger = logging.getLogger("mentalspace.errors")
request_logger = logging.getLogger("mentalspace.requests")

REQUEST_ID_HEADER = "X-Request-ID"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "X-Frame-Options": "DENY",
}

_VALIDATION_TARGETS = ("body", "query", "path", "header", "cookie")

_TABLE_LABELS = {"users": "User", "clients": "Client", "sessions": "Session"}

# "UNIQUE constraint failed: clients.email" (SQLite)
_SQLITE_UNIQUE_RE = re.compile(r"UNIQUE constraint failed: (\w+)\.(\w+)")
# 'duplicate key value violates unique constraint "clients_email_key"' (PostgreSQL)
_PG_UNIQUE_RE = re.compile(r'unique constraint "(\w+?)_(\w+?)_key"')

_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.ROUTE_NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    409: ErrorCode.RESOURCE_EXISTS,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
}


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = uuid.uuid4().hex
        request.state.request_id = request_id
    return request_id


# ── Responder ───────────────────────────────────────────────────


def _log_error(request: Request, exc: ApiError) -> None:
    status = exc.status_code
    summary = "%s %s -> %d %s: %s"
    args = (request.method, request.url.path, status, exc.code.value, exc.message)
    if status >= 500:
        cause = exc.__cause__ or exc
        logger.error(summary, *args, exc_info=(type(cause), cause, cause.__traceback__))
    elif status in (401, 403, 429):
        logger.warning(summary, *args)
    else:
        logger.info(summary, *args)

    if status in (401, 403):
        user_id = ctx_user_id.get()
        audit_access(
            "error_response",
            user_id if user_id is not None else "anonymous",
            request.url.path,
            False,
            code=exc.code.value,
            method=request.method,
            ip=request.client.host if request.client else None,
        )


def render_error(request: Request, exc: ApiError) -> JSONResponse:
    """Log *exc* once and render it as the JSON error envelope."""
    _log_error(request, exc)
    request_id = get_request_id(request)
    envelope = ErrorEnvelope.from_api_error(
        exc,
        path=request.url.path,
        method=request.method,
        request_id=request_id,
    )
    headers = {REQUEST_ID_HEADER: request_id}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers["Retry-After"] = str(max(1, int(retry_after + 0.999)))
    return JSONResponse(status_code=exc.status_code, content=envelope.to_content(), headers=headers)


# ── Translation of framework / database errors ──────────────────


def field_errors_from_validation(exc: RequestValidationError) -> list[FieldError]:
    errors: list[FieldError] = []
    for err in exc.errors():
        loc = tuple(err.get("loc", ()))
        target = None
        if loc and loc[0] in _VALIDATION_TARGETS:
            target, loc = loc[0], loc[1:]
        errors.append(
            FieldError(
                path=loc,
                message=err.get("msg", "Invalid value"),
                code=err.get("type"),
                target=target,
            )
        )
    return errors


def api_error_from_integrity(exc: IntegrityError) -> ApiError:
    """Classify a database integrity violation without leaking its text."""
    orig = getattr(exc, "orig", None)
    text = str(orig if orig is not None else exc)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)

    match = _SQLITE_UNIQUE_RE.search(text) or _PG_UNIQUE_RE.search(text)
    if match or sqlstate == "23505" or "UNIQUE constraint failed" in text:
        if match:
            table, column = match.group(1), match.group(2)
            return ResourceExistsError(_TABLE_LABELS.get(table, table.rstrip("s").title()), column)
        return ResourceExistsError("Resource")

    if sqlstate == "23503" or "FOREIGN KEY constraint failed" in text or "foreign key constraint" in text:
        return BusinessRuleError("A referenced record does not exist", rule="referential_integrity")

    return InternalError.from_exception(exc, expose=settings.EXPOSE_ERROR_DETAILS)


def api_error_from_http(request: Request, exc: StarletteHTTPException) -> ApiError:
    if exc.status_code == 404:
        return RouteNotFoundError(request.method, request.url.path)
    if exc.status_code == 405:
        return MethodNotAllowedError(request.method, request.url.path)
    code = _STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else None
    return ApiError(message, code=code, status_code=exc.status_code, source="http")


def install_error_handlers(app: FastAPI) -> None:
    """Register the responder for every error kind FastAPI dispatches by type."""

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return render_error(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return render_error(request, ValidationFailedError(field_errors_from_validation(exc)))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return render_error(request, api_error_from_http(request, exc))

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
        api_exc = api_error_from_integrity(exc)
        api_exc.__cause__ = exc
        return render_error(request, api_exc)


# ── Middleware ──────────────────────────────────────────────────


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, log the request and catch unclassified exceptions."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = uuid.uuid4().hex
        request.state.request_id = request_id
        rid_token = ctx_request_id.set(request_id)
        uid_token = ctx_user_id.set(None)
        started = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                api_exc = InternalError.from_exception(exc, expose=settings.EXPOSE_ERROR_DETAILS)
                api_exc.__cause__ = exc
                response = render_error(request, api_exc)

            elapsed_ms = (time.perf_counter() - started) * 1000
            request_logger.info(
                "%s %s %d %.1fms",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            for name, value in SECURITY_HEADERS.items():
                response.headers.setdefault(name, value)
            return response
        finally:
            ctx_user_id.reset(uid_token)
            ctx_request_id.reset(rid_token)
