"""
Cached user administration queries.

The users listing is an infinite query over an offset/limit window:

- the next page starts where the last one ended (its offset plus the number
  of users it returned); there is none after an empty page, or after a page
  shorter than the requested limit (10 when unset)
- the previous page starts one limit before the first one, floored at 0;
  there is none before offset 0
"""

from dataclasses import replace
from typing import List, Optional

from ..cache import InfiniteQuery, InfiniteQueryOptions, QueryCache, QueryKey, QueryOptions, QueryState
from ..client import AsyncAuthClient
from ..types import GetUserParams, ListUsersParams, User


BASE_KEY: QueryKey = ("authentication service", "users")

LIST_USERS_KEY: QueryKey = BASE_KEY + ("list",)
GET_USER_KEY: QueryKey = BASE_KEY + ("get",)

DEFAULT_LIST_USERS_LIMIT = 10


def list_users_key(token: Optional[str], params: ListUsersParams) -> QueryKey:
    return LIST_USERS_KEY + (params, {"token": token})


def get_user_key(token: Optional[str], params: Optional[GetUserParams]) -> QueryKey:
    return GET_USER_KEY + (params, {"token": token})


def next_page_offset(last_page: List[User], last_offset: Optional[int], limit: Optional[int]) -> Optional[int]:
    """Offset of the page following last_page, or None when the listing is exhausted."""
    if not last_page or len(last_page) < (limit or DEFAULT_LIST_USERS_LIMIT):
        return None
    return (last_offset or 0) + len(last_page)


def previous_page_offset(first_offset: Optional[int], limit: Optional[int]) -> Optional[int]:
    """Offset of the page preceding the one at first_offset, or None at the start."""
    offset = first_offset or 0
    if offset <= 0:
        return None
    return max(0, offset - (limit or DEFAULT_LIST_USERS_LIMIT))


class UsersQueries:
    """User administration queries, cached through a QueryCache."""

    def __init__(self, client: AsyncAuthClient, cache: QueryCache) -> None:
        self._client = client
        self._cache = cache

    async def list_users(
        self,
        token: Optional[str],
        params: Optional[ListUsersParams] = None,
        max_pages: Optional[int] = None,
    ) -> InfiniteQuery[int, User]:
        """
        List users, one page at a time.

        Returns a handle whose first page is already fetched (unless no token
        is available yet). Use fetch_next_page / fetch_previous_page to move
        the window, and max_pages to bound it.
        """
        params = params or ListUsersParams()
        limit = params.limit

        async def fetch_page(offset: int) -> List[User]:
            return await self._client.users.list_users(token, replace(params, offset=offset))  # type: ignore[arg-type]

        query = self._cache.infinite_query(
            InfiniteQueryOptions(
                key=list_users_key(token, params),
                fn=fetch_page,
                initial_page_param=params.offset or 0,
                get_next_page_param=lambda page, offset: next_page_offset(page, offset, limit),
                get_previous_page_param=lambda _page, offset: previous_page_offset(offset, limit),
                enabled=bool(token),
                max_pages=max_pages,
            )
        )
        await query.fetch()
        return query

    async def get_user(self, token: Optional[str], params: Optional[GetUserParams]) -> QueryState[User]:
        """A single user. Runs once both a token and a user id are given."""
        return await self._cache.fetch_query(
            QueryOptions(
                key=get_user_key(token, params),
                fn=lambda: self._client.users.get_user(token, params),  # type: ignore[arg-type]
                enabled=bool(token) and params is not None,
            )
        )
