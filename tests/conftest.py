"""Shared fixtures for the Agora Auth SDK tests."""

from typing import Any, Dict

import pytest
import respx

from agora_auth import AsyncAuthClient, AuthClient, AuthConfig


BASE_URL = "https://auth.test"
ACCESS_TOKEN = "access-token"
USER_ID = "00000000-0000-0000-0000-000000000001"


def api_route(method: str, path: str) -> respx.Route:
    """Route matching method and path, whatever the query string."""
    return respx.route(method=method, scheme="https", host="auth.test", path=path)


def user_payload(index: int = 1, role: str = "user") -> Dict[str, Any]:
    return {
        "id": f"00000000-0000-0000-0000-{index:012d}",
        "email": f"user{index}@email.com",
        "role": role,
        "createdAt": "2025-05-05T10:56:25.468Z",
        "updatedAt": "2025-05-05T10:56:25.468Z",
    }


@pytest.fixture
def valid_config() -> AuthConfig:
    """Valid configuration for testing."""
    return AuthConfig(base_url=BASE_URL, timeout=10.0, debug=True)


@pytest.fixture
def sync_client(valid_config: AuthConfig) -> AuthClient:
    """Create sync client for testing."""
    return AuthClient(valid_config)


@pytest.fixture
def async_client(valid_config: AuthConfig) -> AsyncAuthClient:
    """Create async client for testing."""
    return AsyncAuthClient(valid_config)
