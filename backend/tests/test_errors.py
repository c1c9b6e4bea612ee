"""Tests for the error taxonomy, the envelope and integrity-error classification."""

from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from mentalspace.errors import (
    ERROR_STATUS_MAP,
    ApiError,
    BusinessRuleError,
    ErrorCode,
    ErrorEnvelope,
    FieldError,
    ForbiddenError,
    InternalError,
    InsufficientPermissionsError,
    InvalidCredentialsError,
    MethodNotAllowedError,
    RateLimitExceededError,
    ResourceExistsError,
    ResourceNotFoundError,
    RouteNotFoundError,
    SessionExpiredError,
    UnauthorizedError,
    ValidationFailedError,
)
from mentalspace.middleware import api_error_from_integrity


def _integrity(message: str, sqlstate: str | None = None) -> IntegrityError:
    orig = Exception(message)
    if sqlstate is not None:
        orig.sqlstate = sqlstate  # type: ignore[attr-defined]
    return IntegrityError("INSERT INTO ...", {}, orig)


class TestStatusMapping:
    def test_every_code_has_a_status(self):
        assert set(ERROR_STATUS_MAP) == set(ErrorCode)

    @pytest.mark.parametrize(
        "exc,status,code",
        [
            (UnauthorizedError(), 401, "UNAUTHORIZED"),
            (InvalidCredentialsError(), 401, "INVALID_CREDENTIALS"),
            (SessionExpiredError(), 401, "SESSION_EXPIRED"),
            (ApiError(code=ErrorCode.INVALID_TOKEN), 401, "INVALID_TOKEN"),
            (ForbiddenError(), 403, "FORBIDDEN"),
            (InsufficientPermissionsError(), 403, "INSUFFICIENT_PERMISSIONS"),
            (ResourceNotFoundError("Client", 1), 404, "RESOURCE_NOT_FOUND"),
            (RouteNotFoundError("GET", "/nope"), 404, "ROUTE_NOT_FOUND"),
            (MethodNotAllowedError("PUT", "/api/health"), 405, "METHOD_NOT_ALLOWED"),
            (ValidationFailedError([]), 400, "VALIDATION_ERROR"),
            (BusinessRuleError("no"), 400, "BUSINESS_RULE_VIOLATION"),
            (ResourceExistsError("Client", "email"), 409, "RESOURCE_EXISTS"),
            (RateLimitExceededError(), 429, "RATE_LIMIT_EXCEEDED"),
            (InternalError(), 500, "INTERNAL_ERROR"),
        ],
    )
    def test_kind_status_and_code(self, exc, status, code):
        assert exc.status_code == status
        assert exc.code.value == code

    def test_explicit_status_overrides_map(self):
        assert ApiError("teapot", code=ErrorCode.BUSINESS_RULE_VIOLATION, status_code=418).status_code == 418


class TestMessagesAndDetails:
    def test_not_found_message_names_the_identifier(self):
        exc = ResourceNotFoundError("Client", 9999)
        assert exc.message == "Client with identifier '9999' was not found"
        assert exc.details is None

    def test_route_not_found_message(self):
        assert RouteNotFoundError("GET", "/api/missing").message == "Route not found: GET /api/missing"

    def test_exists_message(self):
        exc = ResourceExistsError("Client", "email")
        assert exc.message == "A client with this email already exists"
        assert exc.details == {"resource": "Client", "field": "email"}

    def test_unauthorized_default_message(self):
        assert UnauthorizedError().message == "Authentication required"

    def test_internal_default_message(self):
        assert InternalError().message == "An unexpected error occurred"

    def test_validation_details_keep_every_error(self):
        exc = ValidationFailedError(
            [
                FieldError(("email",), "value is not a valid email address", "value_error", "body"),
                FieldError(("first_name",), "Field required", "missing", "body"),
            ]
        )
        assert exc.details == {
            "errors": [
                {"path": ["email"], "message": "value is not a valid email address", "code": "value_error", "target": "body"},
                {"path": ["first_name"], "message": "Field required", "code": "missing", "target": "body"},
            ]
        }

    def test_forbidden_without_roles_has_no_details(self):
        assert ForbiddenError("nope").details is None

    def test_rate_limit_details(self):
        assert RateLimitExceededError(retry_after=11.96).details == {"retryAfterSeconds": 12.0}

    def test_internal_from_exception_hides_message(self):
        exc = InternalError.from_exception(ValueError("password=hunter2"))
        assert exc.details == {"originalError": "ValueError"}
        assert "hunter2" not in exc.message

    def test_internal_from_exception_can_expose_message(self):
        exc = InternalError.from_exception(ValueError("boom"), expose=True)
        assert exc.details == {"originalError": "ValueError: boom"}


class TestEnvelope:
    def test_envelope_keys(self):
        exc = ForbiddenError("no", required_roles=["administrator"], actual_role="clinician")
        content = ErrorEnvelope.from_api_error(exc, path="/api/x", method="GET", request_id="abc").to_content()
        assert set(content) == {"status", "message", "code", "details", "timestamp", "path", "method", "requestId"}
        assert content["status"] == "error"
        assert content["code"] == "FORBIDDEN"
        assert content["requestId"] == "abc"
        datetime.fromisoformat(content["timestamp"])

    def test_details_omitted_when_empty(self):
        content = ErrorEnvelope.from_api_error(
            UnauthorizedError(), path="/api/x", method="POST", request_id="r1"
        ).to_content()
        assert "details" not in content
        assert content["message"] == "Authentication required"


class TestIntegrityClassification:
    def test_sqlite_unique_violation(self):
        exc = api_error_from_integrity(_integrity("UNIQUE constraint failed: clients.email"))
        assert isinstance(exc, ResourceExistsError)
        assert exc.message == "A client with this email already exists"

    def test_postgres_unique_violation(self):
        exc = api_error_from_integrity(
            _integrity('duplicate key value violates unique constraint "users_username_key"', sqlstate="23505")
        )
        assert isinstance(exc, ResourceExistsError)
        assert exc.details == {"resource": "User", "field": "username"}

    def test_foreign_key_violation(self):
        exc = api_error_from_integrity(_integrity("FOREIGN KEY constraint failed"))
        assert isinstance(exc, BusinessRuleError)
        assert exc.status_code == 400

    def test_postgres_foreign_key_by_sqlstate(self):
        exc = api_error_from_integrity(_integrity("insert or update violates a constraint", sqlstate="23503"))
        assert isinstance(exc, BusinessRuleError)

    def test_other_violation_is_internal_and_hides_text(self):
        exc = api_error_from_integrity(_integrity("NOT NULL constraint failed: clients.first_name"))
        assert isinstance(exc, InternalError)
        assert exc.details == {"originalError": "IntegrityError"}
