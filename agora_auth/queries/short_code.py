"""Cached short code operations. All of them are mutations."""

from ..cache import MutationOptions, QueryCache, QueryKey
from ..client import AsyncAuthClient
from ..types import RequestEmailUpdateForm, RequestPasswordResetForm, RequestRegistrationForm


BASE_KEY: QueryKey = ("authentication service", "short code")

REQUEST_REGISTRATION_KEY: QueryKey = BASE_KEY + ("request register",)
REQUEST_EMAIL_UPDATE_KEY: QueryKey = BASE_KEY + ("request email update",)
REQUEST_PASSWORD_RESET_KEY: QueryKey = BASE_KEY + ("request password reset",)


class ShortCodeQueries:
    def __init__(self, client: AsyncAuthClient, cache: QueryCache) -> None:
        self._client = client
        self._cache = cache

    async def request_registration(self, token: str, form: RequestRegistrationForm) -> None:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=REQUEST_REGISTRATION_KEY,
                fn=lambda variables: self._client.short_code.request_registration(token, variables),
            ),
            form,
        )

    async def request_email_update(self, token: str, form: RequestEmailUpdateForm) -> None:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=REQUEST_EMAIL_UPDATE_KEY,
                fn=lambda variables: self._client.short_code.request_email_update(token, variables),
            ),
            form,
        )

    async def request_password_reset(self, token: str, form: RequestPasswordResetForm) -> None:
        return await self._cache.execute_mutation(
            MutationOptions(
                key=REQUEST_PASSWORD_RESET_KEY,
                fn=lambda variables: self._client.short_code.request_password_reset(token, variables),
            ),
            form,
        )
