"""
Agora Auth SDK Type Definitions

Request forms, query parameters and response bodies of the authentication
API. Every type validates itself on construction, so a form that reaches the
wire already satisfies the bounds the server enforces, and a response that
reaches the caller has been checked field by field.

Wire names are camelCase; attributes are snake_case.
"""

import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ConfigurationError, SchemaError


EMAIL_MIN_LENGTH = 3
EMAIL_MAX_LENGTH = 128
PASSWORD_MIN_LENGTH = 2
PASSWORD_MAX_LENGTH = 1024
SHORT_CODE_MIN_LENGTH = 1
SHORT_CODE_MAX_LENGTH = 32
PAGINATION_MAX_LIMIT = 1000

EMAIL_REGEX = re.compile(
    r"^(?!\.)(?!.*\.\.)([A-Z0-9_'+\-\.]*)[A-Z0-9_+-]@([A-Z0-9][A-Z0-9\-]*\.)+[A-Z]{2,}$",
    re.IGNORECASE,
)
UUID_REGEX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
SHORT_CODE_REGEX = re.compile(r"^[A-Za-z0-9_.~-]+$")
# Fractional seconds; the API sends up to nanoseconds.
SECONDS_FRACTION_REGEX = re.compile(r"(:\d{2})\.(\d+)")


class CredentialsRole(str, Enum):
    """A role assigned to a user."""

    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class ClaimsRole(str, Enum):
    """A role granted by a session token."""

    ANON = "auth:anon"
    USER = "auth:user"
    ADMIN = "auth:admin"
    SUPER_ADMIN = "auth:super_admin"


class Lang(str, Enum):
    """Language of the emails carrying short codes."""

    EN = "en"
    FR = "fr"


ROLE_RANK: Dict[CredentialsRole, int] = {
    CredentialsRole.USER: 0,
    CredentialsRole.ADMIN: 1,
    CredentialsRole.SUPER_ADMIN: 2,
}


def can_update_role(
    actor_role: CredentialsRole,
    current_role: CredentialsRole,
    target_role: CredentialsRole,
) -> bool:
    """
    Tell whether an actor may move another user from current_role to target_role.

    A user cannot upgrade others to a role higher than its own, and can only
    downgrade users whose role is lower than its own:

        - super_admin upgrades admin to super_admin: allowed
        - admin upgrades user to admin: allowed
        - super_admin downgrades admin to user: allowed
        - admin upgrades user to super_admin: denied
        - admin downgrades admin to user: denied

    The server applies the same rule and stays authoritative.
    """
    actor = ROLE_RANK[CredentialsRole(actor_role)]
    current = ROLE_RANK[CredentialsRole(current_role)]
    target = ROLE_RANK[CredentialsRole(target_role)]

    if target > current:
        return target <= actor
    if target < current:
        return current < actor
    return False


# =============================================================================
# Field validators
# =============================================================================

def _check_str(field: str, value: Any, min_length: int, max_length: int) -> str:
    if not isinstance(value, str):
        raise SchemaError(field, f"expected a string, got {type(value).__name__}")
    if len(value) < min_length:
        raise SchemaError(field, f"must be at least {min_length} characters long")
    if len(value) > max_length:
        raise SchemaError(field, f"must be at most {max_length} characters long")
    return value


def validate_email(value: Any, field: str = "email") -> str:
    """Validate an email address."""
    _check_str(field, value, EMAIL_MIN_LENGTH, EMAIL_MAX_LENGTH)
    if not EMAIL_REGEX.match(value):
        raise SchemaError(field, f"invalid email {value!r}")
    return value


def validate_password(value: Any, field: str = "password") -> str:
    """Validate a password."""
    return _check_str(field, value, PASSWORD_MIN_LENGTH, PASSWORD_MAX_LENGTH)


def validate_short_code(value: Any, field: str = "shortCode") -> str:
    """Validate a short code: URL safe, 1 to 32 characters."""
    _check_str(field, value, SHORT_CODE_MIN_LENGTH, SHORT_CODE_MAX_LENGTH)
    if not SHORT_CODE_REGEX.match(value):
        raise SchemaError(field, "must only contain URL safe characters")
    return value


def validate_uuid(value: Any, field: str) -> str:
    """Validate a UUID string."""
    if not isinstance(value, str) or not UUID_REGEX.match(value):
        raise SchemaError(field, f"invalid uuid {value!r}")
    return value


def validate_token(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise SchemaError(field, f"expected a string, got {type(value).__name__}")
    return value


def _check_enum(field: str, enum_cls: Any, value: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise SchemaError(field, f"invalid value {value!r}, expected one of: {allowed}") from None


def _check_datetime(field: str, value: Any) -> datetime:
    if not isinstance(value, datetime):
        raise SchemaError(field, f"expected a datetime, got {type(value).__name__}")
    return value


def parse_datetime(value: Any, field: str) -> datetime:
    """Parse an ISO-8601 string (with a Z or numeric offset) into an aware datetime."""
    if not isinstance(value, str):
        raise SchemaError(field, f"expected an ISO-8601 string, got {type(value).__name__}")

    raw = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    # fromisoformat only takes 3 or 6 fraction digits: truncate or pad to microseconds.
    raw = SECONDS_FRACTION_REGEX.sub(
        lambda match: f"{match.group(1)}.{match.group(2)[:6].ljust(6, '0')}", raw, count=1
    )
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise SchemaError(field, f"invalid datetime {value!r}") from None

    if "T" not in value or parsed.tzinfo is None:
        raise SchemaError(field, f"invalid datetime {value!r}, expected a full timestamp with offset")
    return parsed


def format_datetime(value: datetime) -> str:
    """Format a datetime the way the API does (UTC, millisecond precision)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _expect_mapping(data: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise SchemaError(name, f"expected an object, got {type(data).__name__}")
    return data


def _require(data: Mapping[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise SchemaError(key, "field is required")
    return data[key]


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class AuthConfig:
    """SDK configuration options."""

    # URL of the authentication API, e.g. https://auth.example.com
    base_url: str
    # Request timeout in seconds (default: 30)
    timeout: float = 30.0
    # Custom headers to include in requests
    headers: Optional[Dict[str, str]] = None
    # Enable debug logging (default: False)
    debug: bool = False

    @classmethod
    def from_env(cls, prefix: str = "AGORA_AUTH") -> "AuthConfig":
        """
        Build a configuration from the environment.

        Reads ``<prefix>_API`` (required), ``<prefix>_TIMEOUT`` and
        ``<prefix>_DEBUG``.
        """
        base_url = os.environ.get(f"{prefix}_API")
        if not base_url:
            raise ConfigurationError(f"{prefix}_API is not defined")

        timeout = os.environ.get(f"{prefix}_TIMEOUT")
        try:
            timeout_value = float(timeout) if timeout else 30.0
        except ValueError:
            raise ConfigurationError(f"{prefix}_TIMEOUT must be a number, got {timeout!r}") from None

        debug = os.environ.get(f"{prefix}_DEBUG", "").lower() in ("1", "true", "yes")
        return cls(base_url=base_url, timeout=timeout_value, debug=debug)


# =============================================================================
# Responses
# =============================================================================

@dataclass(frozen=True)
class User:
    """User data returned from API."""

    id: str
    email: str
    role: CredentialsRole
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        validate_uuid(self.id, "id")
        validate_email(self.email)
        object.__setattr__(self, "role", _check_enum("role", CredentialsRole, self.role))
        _check_datetime("createdAt", self.created_at)
        _check_datetime("updatedAt", self.updated_at)

    @classmethod
    def from_dict(cls, data: Any) -> "User":
        """Create from dictionary."""
        data = _expect_mapping(data, "user")
        return cls(
            id=_require(data, "id"),
            email=_require(data, "email"),
            role=_require(data, "role"),
            created_at=parse_datetime(_require(data, "createdAt"), "createdAt"),
            updated_at=parse_datetime(_require(data, "updatedAt"), "updatedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
        }


@dataclass(frozen=True)
class Claims:
    """Decoded session claims. A session without user is anonymous."""

    roles: Tuple[ClaimsRole, ...]
    user_id: Optional[str] = None
    refresh_token_id: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.roles, (str, bytes)) or not isinstance(self.roles, (list, tuple)):
            raise SchemaError("roles", "expected a list of roles")
        object.__setattr__(
            self, "roles", tuple(_check_enum("roles", ClaimsRole, role) for role in self.roles)
        )
        if self.user_id is not None:
            validate_uuid(self.user_id, "userID")
        if self.refresh_token_id is not None:
            validate_uuid(self.refresh_token_id, "refreshTokenID")

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def has_role(self, role: ClaimsRole) -> bool:
        return ClaimsRole(role) in self.roles

    @classmethod
    def from_dict(cls, data: Any) -> "Claims":
        data = _expect_mapping(data, "claims")
        return cls(
            roles=_require(data, "roles"),
            user_id=data.get("userID"),
            refresh_token_id=data.get("refreshTokenID"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"roles": [role.value for role in self.roles]}
        if self.user_id is not None:
            result["userID"] = self.user_id
        if self.refresh_token_id is not None:
            result["refreshTokenID"] = self.refresh_token_id
        return result


@dataclass(frozen=True)
class TokenResponse:
    """Tokens issued by the session and credentials endpoints."""

    access_token: str
    refresh_token: Optional[str] = None

    def __post_init__(self) -> None:
        validate_token(self.access_token, "accessToken")
        if self.refresh_token is not None:
            validate_token(self.refresh_token, "refreshToken")

    @classmethod
    def from_dict(cls, data: Any) -> "TokenResponse":
        """Create from dictionary."""
        data = _expect_mapping(data, "tokens")
        return cls(
            access_token=_require(data, "accessToken"),
            refresh_token=data.get("refreshToken"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {"accessToken": self.access_token}
        if self.refresh_token is not None:
            result["refreshToken"] = self.refresh_token
        return result


# =============================================================================
# Forms
# =============================================================================

@dataclass(frozen=True)
class LoginForm:
    """Email and password used to open a session."""

    email: str
    password: str

    def __post_init__(self) -> None:
        validate_email(self.email)
        validate_password(self.password)

    def to_dict(self) -> Dict[str, Any]:
        return {"email": self.email, "password": self.password}


@dataclass(frozen=True)
class RequestRegistrationForm:
    """
    Ask for a registration link.

    The short code is sent to the given email; only the latest link issued
    for an email is valid.
    """

    email: str
    lang: Lang = Lang.EN

    def __post_init__(self) -> None:
        validate_email(self.email)
        object.__setattr__(self, "lang", _check_enum("lang", Lang, self.lang))

    def to_dict(self) -> Dict[str, Any]:
        return {"email": self.email, "lang": self.lang.value}


@dataclass(frozen=True)
class RequestEmailUpdateForm(RequestRegistrationForm):
    """Ask for a link confirming a new email address."""


@dataclass(frozen=True)
class RequestPasswordResetForm(RequestRegistrationForm):
    """Ask for a link allowing to reset a forgotten password."""


@dataclass(frozen=True)
class RegisterForm:
    """User registration data. The short code comes from a registration link."""

    email: str
    password: str
    short_code: str

    def __post_init__(self) -> None:
        validate_email(self.email)
        validate_password(self.password)
        validate_short_code(self.short_code)

    def to_dict(self) -> Dict[str, Any]:
        return {"email": self.email, "password": self.password, "shortCode": self.short_code}


@dataclass(frozen=True)
class UpdateEmailForm:
    user_id: str
    short_code: str

    def __post_init__(self) -> None:
        validate_uuid(self.user_id, "userID")
        validate_short_code(self.short_code)

    def to_dict(self) -> Dict[str, Any]:
        return {"userID": self.user_id, "shortCode": self.short_code}


@dataclass(frozen=True)
class UpdatePasswordForm:
    """Password change data. The current password double-checks the caller identity."""

    password: str
    current_password: str

    def __post_init__(self) -> None:
        validate_password(self.password)
        validate_password(self.current_password, "currentPassword")

    def to_dict(self) -> Dict[str, Any]:
        return {"password": self.password, "currentPassword": self.current_password}


@dataclass(frozen=True)
class ResetPasswordForm:
    user_id: str
    password: str
    short_code: str

    def __post_init__(self) -> None:
        validate_uuid(self.user_id, "userID")
        validate_password(self.password)
        validate_short_code(self.short_code)

    def to_dict(self) -> Dict[str, Any]:
        return {"userID": self.user_id, "password": self.password, "shortCode": self.short_code}


@dataclass(frozen=True)
class UpdateRoleForm:
    """Role change data. See can_update_role for the rules the server applies."""

    user_id: str
    role: CredentialsRole

    def __post_init__(self) -> None:
        validate_uuid(self.user_id, "userID")
        object.__setattr__(self, "role", _check_enum("role", CredentialsRole, self.role))

    def to_dict(self) -> Dict[str, Any]:
        return {"userID": self.user_id, "role": self.role.value}


# =============================================================================
# Query parameters
# =============================================================================

@dataclass(frozen=True)
class RefreshSessionParams:
    access_token: str
    refresh_token: str

    def __post_init__(self) -> None:
        validate_token(self.access_token, "accessToken")
        validate_token(self.refresh_token, "refreshToken")

    def to_params(self) -> List[Tuple[str, str]]:
        return [("accessToken", self.access_token), ("refreshToken", self.refresh_token)]


@dataclass(frozen=True)
class EmailExistsParams:
    email: str

    def __post_init__(self) -> None:
        validate_email(self.email)

    def to_params(self) -> List[Tuple[str, str]]:
        return [("email", self.email)]


@dataclass(frozen=True)
class ListUsersParams:
    """Pagination window and role filter for the users listing."""

    limit: Optional[int] = None
    offset: Optional[int] = None
    roles: Optional[Tuple[CredentialsRole, ...]] = None

    def __post_init__(self) -> None:
        if self.limit is not None:
            if isinstance(self.limit, bool) or not isinstance(self.limit, int):
                raise SchemaError("limit", "expected an integer")
            if not 1 <= self.limit <= PAGINATION_MAX_LIMIT:
                raise SchemaError("limit", f"must be between 1 and {PAGINATION_MAX_LIMIT}")
        if self.offset is not None:
            if isinstance(self.offset, bool) or not isinstance(self.offset, int):
                raise SchemaError("offset", "expected an integer")
            if self.offset < 0:
                raise SchemaError("offset", "must be positive")
        if self.roles is not None:
            if isinstance(self.roles, (str, bytes)):
                raise SchemaError("roles", "expected a list of roles")
            object.__setattr__(
                self, "roles", tuple(_check_enum("roles", CredentialsRole, role) for role in self.roles)
            )

    def to_params(self) -> List[Tuple[str, str]]:
        # Zero values are left to the server defaults.
        params: List[Tuple[str, str]] = []
        if self.limit:
            params.append(("limit", str(self.limit)))
        if self.offset:
            params.append(("offset", str(self.offset)))
        for role in self.roles or ():
            params.append(("roles", role.value))
        return params


@dataclass(frozen=True)
class GetUserParams:
    user_id: str

    def __post_init__(self) -> None:
        validate_uuid(self.user_id, "userID")

    def to_params(self) -> List[Tuple[str, str]]:
        return [("userID", self.user_id)]
