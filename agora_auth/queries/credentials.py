"""Cached credentials operations."""

from typing import Any, Optional

from ..cache import MutationOptions, QueryCache, QueryKey, QueryOptions, QueryState
from ..client import AsyncAuthClient
from ..types import (
    EmailExistsParams,
    RegisterForm,
    ResetPasswordForm,
    TokenResponse,
    UpdateEmailForm,
    UpdatePasswordForm,
    UpdateRoleForm,
    User,
)


BASE_KEY: QueryKey = ("authentication service", "credentials")

EMAIL_EXISTS_KEY: QueryKey = BASE_KEY + ("email-exists",)
CREATE_USER_KEY: QueryKey = BASE_KEY + ("create",)
UPDATE_EMAIL_KEY: QueryKey = BASE_KEY + ("update-email",)
UPDATE_PASSWORD_KEY: QueryKey = BASE_KEY + ("update-password",)
UPDATE_ROLE_KEY: QueryKey = BASE_KEY + ("update-role",)
RESET_PASSWORD_KEY: QueryKey = BASE_KEY + ("reset-password",)


def email_exists_key(token: Optional[str], params: Optional[EmailExistsParams]) -> QueryKey:
    return EMAIL_EXISTS_KEY + (params, {"token": token})


class CredentialsQueries:
    """Credentials operations, cached through a QueryCache."""

    def __init__(self, client: AsyncAuthClient, cache: QueryCache) -> None:
        self._client = client
        self._cache = cache

    async def _invalidate_email_exists(self, *_: Any) -> None:
        # update_email frees an address the client never sees: all of them go stale.
        self._cache.invalidate_queries(EMAIL_EXISTS_KEY)

    async def create_user(self, token: str, form: RegisterForm) -> TokenResponse:
        """Create a user; email-exists queries are invalidated on success."""
        return await self._cache.execute_mutation(
            MutationOptions(
                key=CREATE_USER_KEY,
                fn=lambda variables: self._client.credentials.create_user(token, variables),
                on_success=self._invalidate_email_exists,
            ),
            form,
        )

    async def email_exists(
        self, token: Optional[str], params: Optional[EmailExistsParams]
    ) -> QueryState[bool]:
        """Whether an email is taken. Runs once both a token and an email are given."""
        return await self._cache.fetch_query(
            QueryOptions(
                key=email_exists_key(token, params),
                fn=lambda: self._client.credentials.email_exists(token, params),  # type: ignore[arg-type]
                enabled=bool(token) and params is not None,
            )
        )

    async def update_email(self, token: str, form: UpdateEmailForm) -> str:
        """Update a user email; email-exists queries are invalidated on success."""
        return await self._cache.execute_mutation(
            MutationOptions(
                key=UPDATE_EMAIL_KEY,
                fn=lambda variables: self._client.credentials.update_email(token, variables),
                on_success=self._invalidate_email_exists,
            ),
            form,
        )

    async def update_password(self, token: str, form: UpdatePasswordForm) -> None:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=UPDATE_PASSWORD_KEY,
                fn=lambda variables: self._client.credentials.update_password(token, variables),
            ),
            form,
        )

    async def update_role(self, token: str, form: UpdateRoleForm) -> User:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=UPDATE_ROLE_KEY,
                fn=lambda variables: self._client.credentials.update_role(token, variables),
            ),
            form,
        )

    async def reset_password(self, token: str, form: ResetPasswordForm) -> None:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=RESET_PASSWORD_KEY,
                fn=lambda variables: self._client.credentials.reset_password(token, variables),
            ),
            form,
        )
