"""
Tests for Agora Auth SDK Errors
"""

import httpx
import pytest

from agora_auth.errors import (
    AuthError,
    ConfigurationError,
    EmailTakenError,
    ForbiddenError,
    InternalError,
    SchemaError,
    UnauthorizedError,
    UserNotFoundError,
    ValidationError,
    is_auth_error,
    is_email_taken_error,
    is_forbidden_error,
    is_internal_error,
    is_retryable_error,
    is_unauthorized_error,
    is_user_not_found_error,
    is_validation_error,
    new_error_response_message,
)


class TestErrorHierarchy:
    """Tests for the error categories."""

    @pytest.mark.parametrize("error,status_code", [
        (UnauthorizedError(), 401),
        (ForbiddenError(), 403),
        (UserNotFoundError(), 404),
        (ValidationError("cannot downgrade a user with the same role"), 422),
        (EmailTakenError("email user@email.com is already taken"), 410),
        (InternalError("boom", 500), 500),
        (ConfigurationError("base_url is required"), None),
    ])
    def test_status_codes(self, error: AuthError, status_code):
        assert isinstance(error, AuthError)
        assert error.status_code == status_code

    def test_default_messages(self):
        assert UnauthorizedError().message == "invalid credentials"
        assert ForbiddenError().message == "permission denied"
        assert UserNotFoundError().message == "user not found"

    def test_email_taken_is_validation(self):
        error = EmailTakenError("email user@email.com is already taken")
        assert isinstance(error, ValidationError)
        assert is_validation_error(error)
        assert is_email_taken_error(error)
        assert not is_email_taken_error(ValidationError("invalid"))

    def test_schema_error(self):
        error = SchemaError("shortCode", "must only contain URL safe characters")

        assert str(error) == "shortCode: must only contain URL safe characters"
        assert error.field == "shortCode"
        assert error.details == {"field": "shortCode"}
        assert error.status_code is None
        assert is_validation_error(error)

    def test_to_dict(self):
        error = InternalError("list users: [500] crash", 500, {"attempt": 1})
        assert error.to_dict() == {
            "name": "InternalError",
            "message": "list users: [500] crash",
            "status_code": 500,
            "details": {"attempt": 1},
        }

    def test_repr(self):
        assert repr(ForbiddenError()) == "ForbiddenError(message='permission denied', status_code=403)"

    def test_predicates(self):
        errors = [
            UnauthorizedError(),
            ForbiddenError(),
            UserNotFoundError(),
            ValidationError("invalid"),
            InternalError("boom"),
        ]
        predicates = [
            is_unauthorized_error,
            is_forbidden_error,
            is_user_not_found_error,
            is_validation_error,
            is_internal_error,
        ]

        for i, predicate in enumerate(predicates):
            assert [predicate(error) for error in errors] == [j == i for j in range(len(errors))]

        assert all(is_auth_error(error) for error in errors)
        assert not is_auth_error(ValueError("plain"))

    def test_only_internal_errors_are_retryable(self):
        assert is_retryable_error(InternalError("boom"))
        assert not is_retryable_error(UnauthorizedError())
        assert not is_retryable_error(EmailTakenError("taken"))
        assert not is_retryable_error(RuntimeError("unrelated"))


class TestErrorResponseMessage:
    """Tests for messages built from unexpected responses."""

    def test_with_body(self):
        response = httpx.Response(500, text="database unavailable")
        assert new_error_response_message("get user", response) == "get user: [500] database unavailable"

    def test_without_body(self):
        response = httpx.Response(503)
        assert new_error_response_message("get user", response) == "get user: unexpected status code 503"

    def test_undecodable_body(self):
        response = httpx.Response(500, content=b"\xff\xfe\xfa", headers={"Content-Type": "text/plain; charset=utf-8"})
        message = new_error_response_message("get user", response)
        assert message.startswith("get user: [500] read response: ")
