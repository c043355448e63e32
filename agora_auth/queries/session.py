"""Cached session operations."""

from typing import Any, Optional

from ..cache import MutationOptions, QueryCache, QueryKey, QueryOptions, QueryState
from ..client import AsyncAuthClient
from ..types import Claims, LoginForm, RefreshSessionParams, TokenResponse


BASE_KEY: QueryKey = ("authentication service", "session")

CHECK_SESSION_KEY: QueryKey = BASE_KEY + ("check session",)
CREATE_SESSION_KEY: QueryKey = BASE_KEY + ("create session",)
CREATE_ANONYMOUS_SESSION_KEY: QueryKey = BASE_KEY + ("create anonymous session",)
REFRESH_SESSION_KEY: QueryKey = BASE_KEY + ("refresh session",)
NEW_REFRESH_TOKEN_KEY: QueryKey = BASE_KEY + ("new refresh token",)


def check_session_key(token: Optional[str]) -> QueryKey:
    return CHECK_SESSION_KEY + ({"token": token},)


class SessionQueries:
    """Session operations, cached through a QueryCache."""

    def __init__(self, client: AsyncAuthClient, cache: QueryCache) -> None:
        self._client = client
        self._cache = cache

    async def _invalidate_check_session(self, *_: Any) -> None:
        # A new token was issued: session checks must reflect it.
        self._cache.invalidate_queries(CHECK_SESSION_KEY)

    async def check_session(self, token: Optional[str]) -> QueryState[Claims]:
        """Claims of the session. Does not run until a token is available."""
        return await self._cache.fetch_query(
            QueryOptions(
                key=check_session_key(token),
                fn=lambda: self._client.session.check_session(token),  # type: ignore[arg-type]
                enabled=bool(token),
            )
        )

    async def create_session(self, form: LoginForm) -> TokenResponse:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=CREATE_SESSION_KEY,
                fn=self._client.session.create_session,
                on_success=self._invalidate_check_session,
            ),
            form,
        )

    async def create_anonymous_session(self) -> TokenResponse:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=CREATE_ANONYMOUS_SESSION_KEY,
                fn=lambda _: self._client.session.create_anonymous_session(),
                on_success=self._invalidate_check_session,
            ),
            None,
        )

    async def refresh_session(self, params: RefreshSessionParams) -> TokenResponse:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=REFRESH_SESSION_KEY,
                fn=self._client.session.refresh_session,
                on_success=self._invalidate_check_session,
            ),
            params,
        )

    async def new_refresh_token(self, token: str) -> str:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=NEW_REFRESH_TOKEN_KEY,
                fn=lambda _: self._client.session.new_refresh_token(token),
            ),
            None,
        )
