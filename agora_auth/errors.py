"""
Agora Auth SDK Error Classes

Typed errors for every failure category the authentication API can signal,
plus predicates so callers can branch on a category without importing the
class hierarchy.
"""

from typing import Any, Dict, Optional

import httpx


class AuthError(Exception):
    """Base error class for Agora Auth SDK."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code!r})"


class UnauthorizedError(AuthError):
    """The credentials or session token are invalid or absent."""

    def __init__(self, message: str = "invalid credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 401, details)


class ForbiddenError(AuthError):
    """The caller is authenticated but lacks permission for the action."""

    def __init__(self, message: str = "permission denied", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 403, details)


class UserNotFoundError(AuthError):
    """The target user does not exist."""

    def __init__(self, message: str = "user not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 404, details)


class ValidationError(AuthError):
    """The request was rejected for semantic or business-rule reasons."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = 422,
    ):
        super().__init__(message, status_code, details)


class EmailTakenError(ValidationError):
    """The email is already used by another account.

    The API signals this with HTTP 410.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, 410)


class SchemaError(ValidationError):
    """A value does not match its schema (raised locally, never by the API)."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}", {"field": field}, None)
        self.field = field


class InternalError(AuthError):
    """Any other failure: unexpected status, transport error or malformed response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, status_code, details)


class ConfigurationError(AuthError):
    """Configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, None, details)


def new_error_response_message(operation: str, response: httpx.Response) -> str:
    """Build a diagnostic message from an unexpected response."""
    if not response.content:
        return f"{operation}: unexpected status code {response.status_code}"

    try:
        body = response.content.decode(response.encoding or "utf-8")
    except (LookupError, UnicodeDecodeError) as e:
        body = f"read response: {e}"
    return f"{operation}: [{response.status_code}] {body}"


def is_auth_error(error: Any) -> bool:
    """Check if error is an AuthError."""
    return isinstance(error, AuthError)


def is_unauthorized_error(error: Any) -> bool:
    return isinstance(error, UnauthorizedError)


def is_forbidden_error(error: Any) -> bool:
    return isinstance(error, ForbiddenError)


def is_user_not_found_error(error: Any) -> bool:
    return isinstance(error, UserNotFoundError)


def is_validation_error(error: Any) -> bool:
    """Check if error is a ValidationError (EmailTakenError and SchemaError included)."""
    return isinstance(error, ValidationError)


def is_email_taken_error(error: Any) -> bool:
    return isinstance(error, EmailTakenError)


def is_internal_error(error: Any) -> bool:
    return isinstance(error, InternalError)


def is_retryable_error(error: Any) -> bool:
    """Check if error is retryable.

    Only internal errors are considered transient; every other category is a
    definitive answer from the API.
    """
    return is_internal_error(error)
