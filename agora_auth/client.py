"""
Agora Auth SDK Client

HTTP clients for the authentication API. Both a synchronous and an
asynchronous client are provided; they share the endpoint definitions and
the response interpretation below, and only differ in how the request is
sent.

Every operation sends exactly one request. Statuses the endpoint documents
are mapped to typed errors, any other non-2xx status raises InternalError.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, TypeVar
from urllib.parse import urlparse

import httpx

from .types import (
    AuthConfig,
    Claims,
    EmailExistsParams,
    GetUserParams,
    ListUsersParams,
    LoginForm,
    RefreshSessionParams,
    RegisterForm,
    RequestEmailUpdateForm,
    RequestPasswordResetForm,
    RequestRegistrationForm,
    ResetPasswordForm,
    TokenResponse,
    UpdateEmailForm,
    UpdatePasswordForm,
    UpdateRoleForm,
    User,
    validate_email,
    validate_token,
)
from .errors import (
    AuthError,
    ConfigurationError,
    EmailTakenError,
    ForbiddenError,
    InternalError,
    SchemaError,
    UnauthorizedError,
    UserNotFoundError,
    ValidationError,
    new_error_response_message,
)


logger = logging.getLogger("agora_auth")

T = TypeVar("T")

CREDENTIALS_PATH = "/credentials"
SESSION_PATH = "/session"
SHORT_CODE_PATH = "/short-code"
USERS_PATH = "/users"
USER_PATH = "/user"


# =============================================================================
# Endpoints
# =============================================================================

@dataclass(frozen=True)
class Endpoint:
    """
    A remote operation and the statuses it documents.

    ``errors`` maps a status code to the error class raised for it and a
    message. A message of None means the response body is used instead; a
    message may reference request context, e.g. ``{email}``.
    """

    operation: str
    method: str
    path: str
    requires_auth: bool = True
    errors: Mapping[int, Tuple[Type[AuthError], Optional[str]]] = field(default_factory=dict)


CREATE_USER = Endpoint(
    "create user", "PUT", CREDENTIALS_PATH,
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
        410: (EmailTakenError, "email {email} is already taken"),
    },
)
EMAIL_EXISTS = Endpoint(
    "email exists", "GET", CREDENTIALS_PATH + "/email",
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
    },
)
UPDATE_EMAIL = Endpoint(
    "update email", "PATCH", CREDENTIALS_PATH + "/email",
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
        404: (UserNotFoundError, "user not found"),
        410: (EmailTakenError, None),
    },
)
UPDATE_PASSWORD = Endpoint(
    "update password", "PATCH", CREDENTIALS_PATH + "/password",
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
    },
)
UPDATE_ROLE = Endpoint(
    "update role", "PATCH", CREDENTIALS_PATH + "/role",
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
        404: (UserNotFoundError, "user not found"),
        422: (ValidationError, None),
    },
)
RESET_PASSWORD = Endpoint(
    "reset password", "PATCH", CREDENTIALS_PATH + "/password/reset",
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
    },
)

CHECK_SESSION = Endpoint(
    "check session", "GET", SESSION_PATH,
    errors={401: (UnauthorizedError, "invalid session")},
)
CREATE_SESSION = Endpoint(
    "create session", "PUT", SESSION_PATH,
    requires_auth=False,
    errors={
        403: (ForbiddenError, "invalid credentials"),
        404: (UserNotFoundError, "user not found"),
    },
)
CREATE_ANONYMOUS_SESSION = Endpoint(
    "create anon session", "PUT", SESSION_PATH + "/anon",
    requires_auth=False,
)
REFRESH_SESSION = Endpoint(
    "refresh session", "PATCH", SESSION_PATH + "/refresh",
    requires_auth=False,
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
        422: (ValidationError, None),
    },
)
NEW_REFRESH_TOKEN = Endpoint(
    "new refresh token", "PUT", SESSION_PATH + "/refresh",
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
    },
)

REQUEST_REGISTRATION = Endpoint(
    "request registration", "PUT", SHORT_CODE_PATH + "/register",
    errors={401: (UnauthorizedError, "invalid credentials")},
)
REQUEST_EMAIL_UPDATE = Endpoint(
    "request email update", "PUT", SHORT_CODE_PATH + "/update-email",
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        # Anonymous sessions cannot request an email update.
        403: (ForbiddenError, "permission denied"),
    },
)
REQUEST_PASSWORD_RESET = Endpoint(
    "request password reset", "PUT", SHORT_CODE_PATH + "/update-password",
    errors={401: (UnauthorizedError, "invalid credentials")},
)

LIST_USERS = Endpoint(
    "list users", "GET", USERS_PATH,
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
    },
)
GET_USER = Endpoint(
    "get user", "GET", USER_PATH,
    errors={
        401: (UnauthorizedError, "invalid credentials"),
        403: (ForbiddenError, "permission denied"),
        404: (UserNotFoundError, "user not found"),
    },
)


# =============================================================================
# Shared request / response handling
# =============================================================================

def _validate_config(config: AuthConfig) -> None:
    """Validate configuration."""
    if not config.base_url:
        raise ConfigurationError("base_url is required")
    parsed = urlparse(config.base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(
            f"Invalid base_url {config.base_url!r}. Expected an http(s) URL"
        )
    if config.timeout <= 0:
        raise ConfigurationError("timeout must be positive")


def _raise_for_status(endpoint: Endpoint, response: httpx.Response, **context: Any) -> None:
    """Raise the error the endpoint documents for this status, if any."""
    mapped = endpoint.errors.get(response.status_code)
    if mapped is not None:
        error_cls, message = mapped
        if message is None:
            message = new_error_response_message(endpoint.operation, response)
        else:
            message = message.format(**context)
        raise error_cls(message)

    if not response.is_success:
        raise InternalError(
            new_error_response_message(endpoint.operation, response),
            response.status_code,
        )


def _parse(endpoint: Endpoint, response: httpx.Response, parser: Callable[[Any], T]) -> T:
    """Decode and validate a success body. A malformed body is an internal error."""
    try:
        return parser(response.json())
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InternalError(
            f"{endpoint.operation}: invalid response body: {e}", response.status_code
        ) from e
    except SchemaError as e:
        raise InternalError(
            f"{endpoint.operation}: invalid response body: {e.message}",
            response.status_code,
            {"field": e.field},
        ) from e


def _parse_users(data: Any) -> List[User]:
    if not isinstance(data, list):
        raise SchemaError("users", f"expected a list, got {type(data).__name__}")
    return [User.from_dict(item) for item in data]


def _parse_email(data: Any) -> str:
    if not isinstance(data, Mapping):
        raise SchemaError("email", f"expected an object, got {type(data).__name__}")
    return validate_email(data.get("email"))


def _parse_refresh_token(data: Any) -> str:
    if not isinstance(data, Mapping) or data.get("refreshToken") is None:
        raise SchemaError("refreshToken", "field is required")
    return validate_token(data["refreshToken"], "refreshToken")


class _BaseClient:
    """Configuration and request building shared by both clients."""

    def __init__(self, config: AuthConfig) -> None:
        _validate_config(config)

        self._base_url = config.base_url.rstrip("/")
        self._timeout = config.timeout
        self._debug = config.debug
        self._custom_headers = config.headers or {}

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug(f"[AgoraAuth] {message}", *args)

    def _build_request(
        self,
        endpoint: Endpoint,
        token: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[List[Tuple[str, str]]] = None,
    ) -> Dict[str, Any]:
        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            **self._custom_headers,
        }

        if endpoint.requires_auth:
            if not token:
                raise UnauthorizedError("No access token available")
            headers["Authorization"] = f"Bearer {token}"

        request: Dict[str, Any] = {
            "method": endpoint.method,
            "url": f"{self._base_url}{endpoint.path}",
            "headers": headers,
        }
        if body is not None:
            request["json"] = body
        if params:
            request["params"] = params
        return request


# =============================================================================
# Sync Client
# =============================================================================

class CredentialsNamespace:
    """Credentials operations namespace for sync client."""

    def __init__(self, client: "AuthClient") -> None:
        self._client = client

    def create_user(self, token: str, form: RegisterForm) -> TokenResponse:
        """
        Create a new user.

        The form must carry the short code sent through a registration link to
        the user email. On success, the returned access token grants the new
        user privileges.

        Raises:
            UnauthorizedError, ForbiddenError, EmailTakenError, InternalError
        """
        response = self._client._send(CREATE_USER, token, body=form.to_dict())
        _raise_for_status(CREATE_USER, response, email=form.email)
        return _parse(CREATE_USER, response, TokenResponse.from_dict)

    def email_exists(self, token: str, params: EmailExistsParams) -> bool:
        """Return whether the email is already taken. A 404 means it is free."""
        response = self._client._send(EMAIL_EXISTS, token, params=params.to_params())
        if response.status_code == 404:
            return False
        _raise_for_status(EMAIL_EXISTS, response)
        return True

    def update_email(self, token: str, form: UpdateEmailForm) -> str:
        """
        Update the email of a user.

        The short code was sent to the new address; on success the user email
        becomes that address, which is returned.
        """
        response = self._client._send(UPDATE_EMAIL, token, body=form.to_dict())
        _raise_for_status(UPDATE_EMAIL, response)
        return _parse(UPDATE_EMAIL, response, _parse_email)

    def update_password(self, token: str, form: UpdatePasswordForm) -> None:
        """Update the password of the authenticated user."""
        response = self._client._send(UPDATE_PASSWORD, token, body=form.to_dict())
        _raise_for_status(UPDATE_PASSWORD, response)

    def update_role(self, token: str, form: UpdateRoleForm) -> User:
        """Update the role of a user and return the updated record."""
        response = self._client._send(UPDATE_ROLE, token, body=form.to_dict())
        _raise_for_status(UPDATE_ROLE, response)
        return _parse(UPDATE_ROLE, response, User.from_dict)

    def reset_password(self, token: str, form: ResetPasswordForm) -> None:
        """
        Reset the password of a user.

        Works with an anonymous session; the short code proves the caller owns
        the account email.
        """
        response = self._client._send(RESET_PASSWORD, token, body=form.to_dict())
        _raise_for_status(RESET_PASSWORD, response)


class SessionNamespace:
    """Session operations namespace for sync client."""

    def __init__(self, client: "AuthClient") -> None:
        self._client = client

    def check_session(self, token: str) -> Claims:
        """Return the claims of a valid session token."""
        response = self._client._send(CHECK_SESSION, token)
        _raise_for_status(CHECK_SESSION, response)
        return _parse(CHECK_SESSION, response, Claims.from_dict)

    def create_session(self, form: LoginForm) -> TokenResponse:
        """Open a session with email and password."""
        self._client._log(f"Login attempt for: {form.email}")
        response = self._client._send(CREATE_SESSION, body=form.to_dict())
        _raise_for_status(CREATE_SESSION, response)
        return _parse(CREATE_SESSION, response, TokenResponse.from_dict)

    def create_anonymous_session(self) -> TokenResponse:
        """Open an anonymous session, granting access to low protection routes."""
        response = self._client._send(CREATE_ANONYMOUS_SESSION)
        _raise_for_status(CREATE_ANONYMOUS_SESSION, response)
        return _parse(CREATE_ANONYMOUS_SESSION, response, TokenResponse.from_dict)

    def refresh_session(self, params: RefreshSessionParams) -> TokenResponse:
        """Exchange a refresh token for a new access token."""
        response = self._client._send(REFRESH_SESSION, params=params.to_params())
        _raise_for_status(REFRESH_SESSION, response)
        return _parse(REFRESH_SESSION, response, TokenResponse.from_dict)

    def new_refresh_token(self, token: str) -> str:
        """
        Issue a new refresh token.

        The access token must not be anonymous and must come from a direct
        login, not from a refresh.
        """
        response = self._client._send(NEW_REFRESH_TOKEN, token)
        _raise_for_status(NEW_REFRESH_TOKEN, response)
        return _parse(NEW_REFRESH_TOKEN, response, _parse_refresh_token)


class ShortCodeNamespace:
    """Short code operations namespace for sync client."""

    def __init__(self, client: "AuthClient") -> None:
        self._client = client

    def request_registration(self, token: str, form: RequestRegistrationForm) -> None:
        """
        Send a registration link to an email.

        Does not check whether the email is available, see
        credentials.email_exists.
        """
        response = self._client._send(REQUEST_REGISTRATION, token, body=form.to_dict())
        _raise_for_status(REQUEST_REGISTRATION, response)

    def request_email_update(self, token: str, form: RequestEmailUpdateForm) -> None:
        """Send an email update link to the new address (authenticated users only)."""
        response = self._client._send(REQUEST_EMAIL_UPDATE, token, body=form.to_dict())
        _raise_for_status(REQUEST_EMAIL_UPDATE, response)

    def request_password_reset(self, token: str, form: RequestPasswordResetForm) -> None:
        """Send a password reset link. An anonymous session is enough."""
        response = self._client._send(REQUEST_PASSWORD_RESET, token, body=form.to_dict())
        _raise_for_status(REQUEST_PASSWORD_RESET, response)


class UsersNamespace:
    """User administration namespace for sync client."""

    def __init__(self, client: "AuthClient") -> None:
        self._client = client

    def list_users(self, token: str, params: Optional[ListUsersParams] = None) -> List[User]:
        params = params or ListUsersParams()
        response = self._client._send(LIST_USERS, token, params=params.to_params())
        _raise_for_status(LIST_USERS, response)
        return _parse(LIST_USERS, response, _parse_users)

    def get_user(self, token: str, params: GetUserParams) -> User:
        response = self._client._send(GET_USER, token, params=params.to_params())
        _raise_for_status(GET_USER, response)
        return _parse(GET_USER, response, User.from_dict)


class AuthClient(_BaseClient):
    """
    Agora Auth Client - Synchronous SDK entry point.

    Stateless: tokens are passed to each call, so one client can serve
    several sessions.
    """

    def __init__(self, config: AuthConfig) -> None:
        """Initialize the Agora Auth client."""
        super().__init__(config)

        # HTTP client
        self._http_client = httpx.Client(timeout=self._timeout)

        # Namespaces
        self.credentials = CredentialsNamespace(self)
        self.session = SessionNamespace(self)
        self.short_code = ShortCodeNamespace(self)
        self.users = UsersNamespace(self)

        self._log(f"AuthClient initialized (base_url={self._base_url})")

    def _send(
        self,
        endpoint: Endpoint,
        token: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[List[Tuple[str, str]]] = None,
    ) -> httpx.Response:
        """Send a single HTTP request."""
        request = self._build_request(endpoint, token, body, params)
        try:
            response = self._http_client.request(**request)
        except httpx.TimeoutException as e:
            raise InternalError(f"{endpoint.operation}: request timeout", None, {"timeout": self._timeout}) from e
        except httpx.RequestError as e:
            raise InternalError(f"{endpoint.operation}: {e}") from e
        self._log(f"{endpoint.operation}: {response.status_code}")
        return response

    def close(self) -> None:
        """Close the HTTP client."""
        self._http_client.close()

    def __enter__(self) -> "AuthClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


# =============================================================================
# Async Client
# =============================================================================

class AsyncCredentialsNamespace:
    """Credentials operations namespace for async client."""

    def __init__(self, client: "AsyncAuthClient") -> None:
        self._client = client

    async def create_user(self, token: str, form: RegisterForm) -> TokenResponse:
        """Create a new user from a registration short code."""
        response = await self._client._send(CREATE_USER, token, body=form.to_dict())
        _raise_for_status(CREATE_USER, response, email=form.email)
        return _parse(CREATE_USER, response, TokenResponse.from_dict)

    async def email_exists(self, token: str, params: EmailExistsParams) -> bool:
        """Return whether the email is already taken."""
        response = await self._client._send(EMAIL_EXISTS, token, params=params.to_params())
        if response.status_code == 404:
            return False
        _raise_for_status(EMAIL_EXISTS, response)
        return True

    async def update_email(self, token: str, form: UpdateEmailForm) -> str:
        """Update the email of a user, returning the new address."""
        response = await self._client._send(UPDATE_EMAIL, token, body=form.to_dict())
        _raise_for_status(UPDATE_EMAIL, response)
        return _parse(UPDATE_EMAIL, response, _parse_email)

    async def update_password(self, token: str, form: UpdatePasswordForm) -> None:
        response = await self._client._send(UPDATE_PASSWORD, token, body=form.to_dict())
        _raise_for_status(UPDATE_PASSWORD, response)

    async def update_role(self, token: str, form: UpdateRoleForm) -> User:
        response = await self._client._send(UPDATE_ROLE, token, body=form.to_dict())
        _raise_for_status(UPDATE_ROLE, response)
        return _parse(UPDATE_ROLE, response, User.from_dict)

    async def reset_password(self, token: str, form: ResetPasswordForm) -> None:
        response = await self._client._send(RESET_PASSWORD, token, body=form.to_dict())
        _raise_for_status(RESET_PASSWORD, response)


class AsyncSessionNamespace:
    """Session operations namespace for async client."""

    def __init__(self, client: "AsyncAuthClient") -> None:
        self._client = client

    async def check_session(self, token: str) -> Claims:
        response = await self._client._send(CHECK_SESSION, token)
        _raise_for_status(CHECK_SESSION, response)
        return _parse(CHECK_SESSION, response, Claims.from_dict)

    async def create_session(self, form: LoginForm) -> TokenResponse:
        self._client._log(f"Login attempt for: {form.email}")
        response = await self._client._send(CREATE_SESSION, body=form.to_dict())
        _raise_for_status(CREATE_SESSION, response)
        return _parse(CREATE_SESSION, response, TokenResponse.from_dict)

    async def create_anonymous_session(self) -> TokenResponse:
        response = await self._client._send(CREATE_ANONYMOUS_SESSION)
        _raise_for_status(CREATE_ANONYMOUS_SESSION, response)
        return _parse(CREATE_ANONYMOUS_SESSION, response, TokenResponse.from_dict)

    async def refresh_session(self, params: RefreshSessionParams) -> TokenResponse:
        response = await self._client._send(REFRESH_SESSION, params=params.to_params())
        _raise_for_status(REFRESH_SESSION, response)
        return _parse(REFRESH_SESSION, response, TokenResponse.from_dict)

    async def new_refresh_token(self, token: str) -> str:
        response = await self._client._send(NEW_REFRESH_TOKEN, token)
        _raise_for_status(NEW_REFRESH_TOKEN, response)
        return _parse(NEW_REFRESH_TOKEN, response, _parse_refresh_token)


class AsyncShortCodeNamespace:
    """Short code operations namespace for async client."""

    def __init__(self, client: "AsyncAuthClient") -> None:
        self._client = client

    async def request_registration(self, token: str, form: RequestRegistrationForm) -> None:
        response = await self._client._send(REQUEST_REGISTRATION, token, body=form.to_dict())
        _raise_for_status(REQUEST_REGISTRATION, response)

    async def request_email_update(self, token: str, form: RequestEmailUpdateForm) -> None:
        response = await self._client._send(REQUEST_EMAIL_UPDATE, token, body=form.to_dict())
        _raise_for_status(REQUEST_EMAIL_UPDATE, response)

    async def request_password_reset(self, token: str, form: RequestPasswordResetForm) -> None:
        response = await self._client._send(REQUEST_PASSWORD_RESET, token, body=form.to_dict())
        _raise_for_status(REQUEST_PASSWORD_RESET, response)


class AsyncUsersNamespace:
    """User administration namespace for async client."""

    def __init__(self, client: "AsyncAuthClient") -> None:
        self._client = client

    async def list_users(self, token: str, params: Optional[ListUsersParams] = None) -> List[User]:
        params = params or ListUsersParams()
        response = await self._client._send(LIST_USERS, token, params=params.to_params())
        _raise_for_status(LIST_USERS, response)
        return _parse(LIST_USERS, response, _parse_users)

    async def get_user(self, token: str, params: GetUserParams) -> User:
        response = await self._client._send(GET_USER, token, params=params.to_params())
        _raise_for_status(GET_USER, response)
        return _parse(GET_USER, response, User.from_dict)


class AsyncAuthClient(_BaseClient):
    """
    Agora Auth Async Client - Asynchronous SDK entry point.

    Ideal for FastAPI, aiohttp, and other async frameworks, and the client the
    query layer (agora_auth.queries) is built on.
    """

    def __init__(self, config: AuthConfig) -> None:
        """Initialize the async Agora Auth client."""
        super().__init__(config)

        # HTTP client (created lazily)
        self._http_client: Optional[httpx.AsyncClient] = None

        # Namespaces
        self.credentials = AsyncCredentialsNamespace(self)
        self.session = AsyncSessionNamespace(self)
        self.short_code = AsyncShortCodeNamespace(self)
        self.users = AsyncUsersNamespace(self)

        self._log(f"AsyncAuthClient initialized (base_url={self._base_url})")

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def _send(
        self,
        endpoint: Endpoint,
        token: Optional[str] = None,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[List[Tuple[str, str]]] = None,
    ) -> httpx.Response:
        """Send a single HTTP request."""
        request = self._build_request(endpoint, token, body, params)
        try:
            client = self._get_client()
            response = await client.request(**request)
        except httpx.TimeoutException as e:
            raise InternalError(f"{endpoint.operation}: request timeout", None, {"timeout": self._timeout}) from e
        except httpx.RequestError as e:
            raise InternalError(f"{endpoint.operation}: {e}") from e
        self._log(f"{endpoint.operation}: {response.status_code}")
        return response

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "AsyncAuthClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


# =============================================================================
# Factory Functions
# =============================================================================

def create_auth_client(config: AuthConfig) -> AuthClient:
    """Create a new synchronous Agora Auth client."""
    return AuthClient(config)


def create_async_auth_client(config: AuthConfig) -> AsyncAuthClient:
    """Create a new asynchronous Agora Auth client."""
    return AsyncAuthClient(config)
