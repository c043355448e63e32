"""
Tests for Agora Auth SDK Query Cache

Covers key hashing, in-flight sharing, the retry policy, invalidation,
mutations and infinite queries. Retry delays are zeroed so nothing sleeps.
"""

import asyncio
from typing import List

import pytest

from agora_auth import ListUsersParams
from agora_auth.cache import (
    InfiniteQueryOptions,
    MutationOptions,
    QueryCache,
    QueryOptions,
    QueryState,
    default_retry,
    default_retry_delay,
    hash_key,
    key_matches,
)
from agora_auth.errors import InternalError, UnauthorizedError, UserNotFoundError


PAGE_SIZE = 10
ITEMS = list(range(25))


@pytest.fixture
def cache() -> QueryCache:
    return QueryCache(retry_delay=lambda failure_count: 0)


class Counter:
    """Async function recording how often it was called."""

    def __init__(self, *outcomes):
        self.calls = 0
        self._outcomes = list(outcomes)

    async def __call__(self):
        self.calls += 1
        outcome = self._outcomes[min(self.calls, len(self._outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def page_options(key=("items",), initial_page_param: int = 0, **kwargs) -> InfiniteQueryOptions:
    """Pages of PAGE_SIZE items over ITEMS, offset based. Fetched offsets land in options.calls."""
    calls: List[int] = []

    async def fetch_page(offset: int) -> List[int]:
        calls.append(offset)
        return ITEMS[offset:offset + PAGE_SIZE]

    options = InfiniteQueryOptions(
        key=key,
        fn=fetch_page,
        initial_page_param=initial_page_param,
        get_next_page_param=lambda page, offset: offset + len(page) if len(page) == PAGE_SIZE else None,
        get_previous_page_param=lambda _page, offset: max(0, offset - PAGE_SIZE) if offset > 0 else None,
        **kwargs,
    )
    options.calls = calls  # type: ignore[attr-defined]
    return options


# =============================================================================
# Key Tests
# =============================================================================

class TestKeys:
    """Keys are compared structurally."""

    def test_equal_structures_hash_equal(self):
        first = ("users", "list", ListUsersParams(limit=10, roles=("admin",)), {"token": "t"})
        second = ("users", "list", ListUsersParams(limit=10, roles=("admin",)), {"token": "t"})
        assert hash_key(first) == hash_key(second)

    def test_different_values_hash_differently(self):
        assert hash_key(("users", {"token": "a"})) != hash_key(("users", {"token": "b"}))
        assert hash_key(("users", ListUsersParams(limit=10))) != hash_key(("users", ListUsersParams(limit=20)))

    def test_mapping_order_does_not_matter(self):
        assert hash_key(({"a": 1, "b": 2},)) == hash_key(({"b": 2, "a": 1},))

    def test_key_matches(self):
        key = ("authentication service", "credentials", "email exists", None, {"token": "t"})
        assert key_matches(key, ())
        assert key_matches(key, ("authentication service",))
        assert key_matches(key, ("authentication service", "credentials", "email exists"))
        assert not key_matches(key, ("authentication service", "session"))
        assert not key_matches(("a",), ("a", "b"))


# =============================================================================
# Query Tests
# =============================================================================

class TestQueries:
    """Tests for cached reads."""

    @pytest.mark.asyncio
    async def test_fetch_and_cache(self, cache: QueryCache):
        fn = Counter("data")
        options = QueryOptions(key=("session", "check"), fn=fn)

        first = await cache.fetch_query(options)
        second = await cache.fetch_query(options)

        assert first.is_success
        assert first.data == "data"
        assert second is first
        assert fn.calls == 1
        assert cache.get_query_data(("session", "check")) == "data"
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_concurrent_reads_share_one_call(self, cache: QueryCache):
        gate = asyncio.Event()
        calls = 0

        async def fn():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "data"

        options = QueryOptions(key=("users", "get"), fn=fn)
        first = asyncio.ensure_future(cache.fetch_query(options))
        second = asyncio.ensure_future(cache.fetch_query(options))
        await asyncio.sleep(0)

        assert cache.is_fetching(("users", "get"))
        gate.set()
        results = await asyncio.gather(first, second)

        assert calls == 1
        assert results[0] is results[1]
        assert not cache.is_fetching(("users", "get"))

    @pytest.mark.asyncio
    async def test_error_is_stored(self, cache: QueryCache):
        error = UserNotFoundError()
        options = QueryOptions(key=("users", "get"), fn=Counter(error))

        state = await cache.fetch_query(options)

        assert state.is_error
        assert state.error is error
        with pytest.raises(UserNotFoundError):
            state.unwrap()

    @pytest.mark.asyncio
    async def test_error_is_refetched(self, cache: QueryCache):
        fn = Counter(UserNotFoundError(), "data")
        options = QueryOptions(key=("users", "get"), fn=fn)

        assert (await cache.fetch_query(options)).is_error
        state = await cache.fetch_query(options)

        assert state.unwrap() == "data"
        assert state.error is None
        assert fn.calls == 2

    @pytest.mark.asyncio
    async def test_disabled_query(self, cache: QueryCache):
        fn = Counter("data")

        state = await cache.fetch_query(QueryOptions(key=("users", "get"), fn=fn, enabled=False))

        assert state.is_idle
        assert fn.calls == 0
        assert len(cache) == 0
        with pytest.raises(RuntimeError):
            state.unwrap()

    @pytest.mark.asyncio
    async def test_disabled_query_keeps_state(self, cache: QueryCache):
        fn = Counter("data")
        await cache.fetch_query(QueryOptions(key=("users", "get"), fn=fn))
        cache.invalidate_queries(("users",))

        state = await cache.fetch_query(QueryOptions(key=("users", "get"), fn=fn, enabled=False))

        assert state.data == "data"
        assert state.is_stale
        assert fn.calls == 1


# =============================================================================
# Retry Tests
# =============================================================================

class TestRetry:
    """Only internal errors are retried, up to three attempts in total."""

    def test_default_policy(self):
        assert default_retry(1, InternalError("boom"))
        assert default_retry(2, InternalError("boom"))
        assert not default_retry(3, InternalError("boom"))
        assert not default_retry(1, UnauthorizedError())

    def test_default_delay_is_linear(self):
        assert [default_retry_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 1.5]

    @pytest.mark.asyncio
    async def test_internal_error_is_retried(self, cache: QueryCache):
        fn = Counter(InternalError("boom"))

        state = await cache.fetch_query(QueryOptions(key=("session",), fn=fn))

        assert state.is_error
        assert state.failure_count == 3
        assert fn.calls == 3

    @pytest.mark.asyncio
    async def test_success_after_retry(self, cache: QueryCache):
        fn = Counter(InternalError("boom"), InternalError("boom"), "data")

        state = await cache.fetch_query(QueryOptions(key=("session",), fn=fn))

        assert state.data == "data"
        assert state.failure_count == 0
        assert fn.calls == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [UnauthorizedError(), UserNotFoundError(), ValueError("bad")])
    async def test_other_errors_are_not_retried(self, cache: QueryCache, error):
        fn = Counter(error)

        state = await cache.fetch_query(QueryOptions(key=("session",), fn=fn))

        assert state.error is error
        assert state.failure_count == 1
        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_delays(self):
        delays: List[int] = []

        def record(failure_count: int) -> float:
            delays.append(failure_count)
            return 0

        cache = QueryCache(retry_delay=record)
        await cache.fetch_query(QueryOptions(key=("session",), fn=Counter(InternalError("boom"))))

        assert delays == [1, 2]

    @pytest.mark.asyncio
    async def test_per_query_policy(self, cache: QueryCache):
        fn = Counter(InternalError("boom"))

        state = await cache.fetch_query(
            QueryOptions(key=("session",), fn=fn, retry=lambda count, error: False)
        )

        assert state.failure_count == 1
        assert fn.calls == 1


# =============================================================================
# Invalidation Tests
# =============================================================================

class TestInvalidation:
    """Tests for prefix invalidation."""

    @pytest.mark.asyncio
    async def test_invalidate_marks_stale(self, cache: QueryCache):
        users = Counter("users")
        session = Counter("session")
        await cache.fetch_query(QueryOptions(key=("auth", "users", 1), fn=users))
        await cache.fetch_query(QueryOptions(key=("auth", "session"), fn=session))

        assert cache.invalidate_queries(("auth", "users")) == 1

        assert cache.get_query_state(("auth", "users", 1)).is_stale
        assert not cache.get_query_state(("auth", "session")).is_stale

        await cache.fetch_query(QueryOptions(key=("auth", "users", 1), fn=users))
        await cache.fetch_query(QueryOptions(key=("auth", "session"), fn=session))
        assert users.calls == 2
        assert session.calls == 1

    @pytest.mark.asyncio
    async def test_stale_data_stays_readable(self, cache: QueryCache):
        await cache.fetch_query(QueryOptions(key=("auth", "users"), fn=Counter("users")))
        cache.invalidate_queries()

        assert cache.get_query_data(("auth", "users")) == "users"

    @pytest.mark.asyncio
    async def test_refetch_queries(self, cache: QueryCache):
        first = Counter("first")
        second = Counter("second")
        await cache.fetch_query(QueryOptions(key=("auth", "users", 1), fn=first))
        await cache.fetch_query(QueryOptions(key=("auth", "users", 2), fn=second))
        cache.invalidate_queries(("auth", "users", 1))

        states = await cache.refetch_queries(("auth",))

        assert [state.data for state in states] == ["first"]
        assert first.calls == 2
        assert second.calls == 1
        assert not cache.get_query_state(("auth", "users", 1)).is_stale

    @pytest.mark.asyncio
    async def test_remove_and_clear(self, cache: QueryCache):
        await cache.fetch_query(QueryOptions(key=("auth", "users"), fn=Counter("users")))
        await cache.fetch_query(QueryOptions(key=("auth", "session"), fn=Counter("session")))

        assert cache.remove_queries(("auth", "users")) == 1
        assert cache.find_keys() == [("auth", "session")]

        cache.clear()
        assert len(cache) == 0


class TestInvalidationInFlight:
    """Invalidating a key while a read of it is still running."""

    @pytest.fixture
    def email_exists(self):
        """A gated read returning whether the email was taken when the call started."""

        class EmailExists:
            def __init__(self):
                self.taken = False
                self.calls = 0
                self.started = asyncio.Event()
                self.gate = asyncio.Event()

            async def __call__(self):
                self.calls += 1
                taken = self.taken
                self.started.set()
                await self.gate.wait()
                return taken

        return EmailExists()

    @pytest.mark.asyncio
    async def test_result_lands_stale(self, cache: QueryCache, email_exists):
        options = QueryOptions(key=("credentials", "email-exists", "user@example.com"), fn=email_exists)
        pending = asyncio.ensure_future(cache.fetch_query(options))
        await email_exists.started.wait()

        email_exists.taken = True
        assert cache.invalidate_queries(("credentials", "email-exists")) == 1
        email_exists.gate.set()
        state = await pending

        assert state.data is False
        assert state.is_stale
        assert cache.get_query_state(options.key).is_stale

        refreshed = await cache.fetch_query(options)
        assert refreshed.data is True
        assert not refreshed.is_stale
        assert email_exists.calls == 2

    @pytest.mark.asyncio
    async def test_later_reads_start_a_new_call(self, cache: QueryCache, email_exists):
        options = QueryOptions(key=("credentials", "email-exists", "user@example.com"), fn=email_exists)
        first = asyncio.ensure_future(cache.fetch_query(options))
        await email_exists.started.wait()

        email_exists.taken = True
        cache.invalidate_queries(("credentials",))
        second = asyncio.ensure_future(cache.fetch_query(options))
        await asyncio.sleep(0)
        email_exists.gate.set()
        before, after = await asyncio.gather(first, second)

        assert email_exists.calls == 2
        assert before.data is False
        assert before.is_stale
        assert after.data is True
        assert not after.is_stale

        # The older call never replaces the newer result.
        stored = cache.get_query_state(options.key)
        assert stored.data is True
        assert not stored.is_stale

    @pytest.mark.asyncio
    async def test_removed_entry_stays_removed(self, cache: QueryCache, email_exists):
        options = QueryOptions(key=("credentials", "email-exists", "user@example.com"), fn=email_exists)
        pending = asyncio.ensure_future(cache.fetch_query(options))
        await email_exists.started.wait()

        assert cache.remove_queries(("credentials",)) == 1
        email_exists.gate.set()
        state = await pending

        assert state.is_stale
        assert cache.get_query_state(options.key) is None

    @pytest.mark.asyncio
    async def test_infinite_query_lands_stale(self, cache: QueryCache):
        options = page_options()
        fetch_page = options.fn
        started = asyncio.Event()
        gate = asyncio.Event()

        async def gated(offset: int) -> List[int]:
            started.set()
            await gate.wait()
            return await fetch_page(offset)

        options.fn = gated
        query = cache.infinite_query(options)
        pending = asyncio.ensure_future(query.fetch())
        await started.wait()

        assert cache.invalidate_queries(("items",)) == 1
        gate.set()
        state = await pending

        assert state.is_success
        assert state.is_stale
        assert query.state.is_stale

        refreshed = await query.fetch()
        assert not refreshed.is_stale
        assert options.calls == [0, 0]


# =============================================================================
# Mutation Tests
# =============================================================================

class TestMutations:
    """Tests for uncached writes."""

    @pytest.mark.asyncio
    async def test_success_hook(self, cache: QueryCache):
        seen = []

        async def fn(variables):
            return variables * 2

        async def on_success(result, variables):
            seen.append((result, variables))

        result = await cache.execute_mutation(MutationOptions(key=("double",), fn=fn, on_success=on_success), 21)

        assert result == 42
        assert seen == [(42, 21)]
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_error_propagates(self, cache: QueryCache):
        seen = []

        async def fn(variables):
            raise InternalError("boom")

        async def on_success(result, variables):
            seen.append(result)

        with pytest.raises(InternalError):
            await cache.execute_mutation(MutationOptions(key=("fail",), fn=fn, on_success=on_success), None)
        assert seen == []


# =============================================================================
# Infinite Query Tests
# =============================================================================

class TestInfiniteQueries:
    """Tests for paginated reads."""

    @pytest.mark.asyncio
    async def test_pages_in_both_directions(self, cache: QueryCache):
        query = cache.infinite_query(page_options(initial_page_param=10))

        state = await query.fetch()
        assert state.pages == (list(range(10, 20)),)
        assert query.has_next_page
        assert query.has_previous_page

        await query.fetch_next_page()
        assert query.page_params == (10, 20)
        assert not query.has_next_page

        await query.fetch_previous_page()
        assert query.page_params == (0, 10, 20)
        assert query.items == ITEMS
        assert not query.has_previous_page

    @pytest.mark.asyncio
    async def test_no_page_past_the_end(self, cache: QueryCache):
        options = page_options(initial_page_param=20)
        query = cache.infinite_query(options)
        await query.fetch()

        state = await query.fetch_next_page()

        assert state.page_params == (20,)
        assert options.calls == [20]

    @pytest.mark.asyncio
    async def test_max_pages(self, cache: QueryCache):
        query = cache.infinite_query(page_options(initial_page_param=10, max_pages=2))
        await query.fetch()
        await query.fetch_next_page()
        assert query.page_params == (10, 20)

        await query.fetch_previous_page()
        assert query.page_params == (0, 10)

    @pytest.mark.asyncio
    async def test_next_page_fetches_first_page_when_empty(self, cache: QueryCache):
        query = cache.infinite_query(page_options())

        state = await query.fetch_next_page()

        assert state.page_params == (0,)

    @pytest.mark.asyncio
    async def test_disabled(self, cache: QueryCache):
        options = page_options(enabled=False)
        query = cache.infinite_query(options)

        await query.fetch()
        await query.fetch_next_page()

        assert query.pages == ()
        assert options.calls == []

    @pytest.mark.asyncio
    async def test_invalidation_refetches_window(self, cache: QueryCache):
        options = page_options()
        query = cache.infinite_query(options)
        await query.fetch()
        await query.fetch_next_page()

        assert cache.invalidate_queries(("items",)) == 1
        state = await query.fetch()

        assert options.calls == [0, 10, 0, 10]
        assert state.page_params == (0, 10)
        assert not state.is_stale

    @pytest.mark.asyncio
    async def test_error(self, cache: QueryCache):
        async def fail(offset: int) -> List[int]:
            raise UnauthorizedError()

        query = cache.infinite_query(
            InfiniteQueryOptions(
                key=("items",),
                fn=fail,
                initial_page_param=0,
                get_next_page_param=lambda page, offset: None,
                get_previous_page_param=lambda page, offset: None,
            )
        )

        state = await query.fetch()

        assert state.is_error
        assert isinstance(state.error, UnauthorizedError)
        assert state.pages == ()


def test_query_state_defaults():
    state: QueryState[str] = QueryState(key=("key",))
    assert state.is_idle
    assert state.data is None
    assert not state.is_stale
