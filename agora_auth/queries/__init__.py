"""
Agora Auth Query Layer

Reads are cached queries, writes are mutations that invalidate the queries
they make stale. Built on the async client:

    async with AsyncAuthClient(config) as client:
        queries = AuthQueries(client)
        state = await queries.session.check_session(token)
"""

from typing import Optional

from ..cache import QueryCache
from ..client import AsyncAuthClient
from .credentials import CredentialsQueries, email_exists_key
from .session import SessionQueries, check_session_key
from .short_code import ShortCodeQueries
from .users import (
    DEFAULT_LIST_USERS_LIMIT,
    UsersQueries,
    get_user_key,
    list_users_key,
    next_page_offset,
    previous_page_offset,
)


class AuthQueries:
    """Entry point of the query layer. Namespaces mirror the client ones."""

    def __init__(self, client: AsyncAuthClient, cache: Optional[QueryCache] = None) -> None:
        self.client = client
        self.cache = cache if cache is not None else QueryCache()

        self.credentials = CredentialsQueries(client, self.cache)
        self.session = SessionQueries(client, self.cache)
        self.short_code = ShortCodeQueries(client, self.cache)
        self.users = UsersQueries(client, self.cache)


__all__ = [
    "AuthQueries",
    "CredentialsQueries",
    "SessionQueries",
    "ShortCodeQueries",
    "UsersQueries",
    "DEFAULT_LIST_USERS_LIMIT",
    "email_exists_key",
    "check_session_key",
    "list_users_key",
    "get_user_key",
    "next_page_offset",
    "previous_page_offset",
]
