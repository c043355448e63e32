"""
Agora Auth Python SDK

A typed client for the Agora authentication API: credentials, sessions,
short codes and user administration, with sync and async clients and a
query cache for the async one.
"""

from .client import AuthClient, AsyncAuthClient, create_auth_client, create_async_auth_client
from .types import (
    AuthConfig,
    User,
    Claims,
    TokenResponse,
    CredentialsRole,
    ClaimsRole,
    Lang,
    LoginForm,
    RegisterForm,
    UpdateEmailForm,
    UpdatePasswordForm,
    ResetPasswordForm,
    UpdateRoleForm,
    RequestRegistrationForm,
    RequestEmailUpdateForm,
    RequestPasswordResetForm,
    RefreshSessionParams,
    EmailExistsParams,
    ListUsersParams,
    GetUserParams,
    can_update_role,
)
from .errors import (
    AuthError,
    UnauthorizedError,
    ForbiddenError,
    UserNotFoundError,
    ValidationError,
    EmailTakenError,
    SchemaError,
    InternalError,
    ConfigurationError,
    is_auth_error,
    is_unauthorized_error,
    is_forbidden_error,
    is_user_not_found_error,
    is_validation_error,
    is_email_taken_error,
    is_internal_error,
    is_retryable_error,
)
from .cache import QueryCache, QueryState, InfiniteQuery, InfiniteQueryState
from .queries import AuthQueries

__version__ = "1.0.0"
__all__ = [
    # Clients
    "AuthClient",
    "AsyncAuthClient",
    "create_auth_client",
    "create_async_auth_client",
    # Types
    "AuthConfig",
    "User",
    "Claims",
    "TokenResponse",
    "CredentialsRole",
    "ClaimsRole",
    "Lang",
    "LoginForm",
    "RegisterForm",
    "UpdateEmailForm",
    "UpdatePasswordForm",
    "ResetPasswordForm",
    "UpdateRoleForm",
    "RequestRegistrationForm",
    "RequestEmailUpdateForm",
    "RequestPasswordResetForm",
    "RefreshSessionParams",
    "EmailExistsParams",
    "ListUsersParams",
    "GetUserParams",
    "can_update_role",
    # Errors
    "AuthError",
    "UnauthorizedError",
    "ForbiddenError",
    "UserNotFoundError",
    "ValidationError",
    "EmailTakenError",
    "SchemaError",
    "InternalError",
    "ConfigurationError",
    "is_auth_error",
    "is_unauthorized_error",
    "is_forbidden_error",
    "is_user_not_found_error",
    "is_validation_error",
    "is_email_taken_error",
    "is_internal_error",
    "is_retryable_error",
    # Query layer
    "QueryCache",
    "QueryState",
    "InfiniteQuery",
    "InfiniteQueryState",
    "AuthQueries",
]
