"""
Agora Auth SDK Query Cache

A small in-process cache for API reads ("queries") and writes
("mutations"), independent of any UI framework:

- queries are memoized per key; concurrent reads of the same key share one
  in-flight call; failures are stored on the query state instead of raised
- mutations are never cached; they re-raise on failure and run their
  success hook, where dependent queries get invalidated
- invalidation is by key prefix and marks entries stale, so the next read
  fetches fresh data; a read already in flight when its key is invalidated
  lands stale, and later reads do not join it
- infinite queries hold a window of pages fetched in both directions

Keys are tuples, compared structurally: dataclasses, enums, mappings and
sequences are normalized before hashing.

All state lives on one event loop; the cache itself takes no locks.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, fields, is_dataclass, replace
from datetime import datetime
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Literal,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from .errors import is_retryable_error


logger = logging.getLogger("agora_auth")

T = TypeVar("T")
V = TypeVar("V")
P = TypeVar("P")

QueryKey = Tuple[Any, ...]
QueryStatus = Literal["idle", "pending", "success", "error"]
RetryPolicy = Callable[[int, BaseException], bool]
RetryDelay = Callable[[int], float]

MAX_QUERY_ATTEMPTS = 3
RETRY_DELAY_STEP = 0.5


def default_retry(failure_count: int, error: BaseException) -> bool:
    """Retry transient (internal) errors, up to MAX_QUERY_ATTEMPTS attempts in total."""
    return failure_count < MAX_QUERY_ATTEMPTS and is_retryable_error(error)


def default_retry_delay(failure_count: int) -> float:
    """Linear backoff: 0.5s after the first failure, 1s after the second, ..."""
    return failure_count * RETRY_DELAY_STEP


# =============================================================================
# Keys
# =============================================================================

def _normalize(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _normalize(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def hash_key(key: QueryKey) -> str:
    """Deterministic structural hash of a query key."""
    return json.dumps(_normalize(key), sort_keys=True, separators=(",", ":"), default=str)


def key_matches(key: QueryKey, prefix: QueryKey) -> bool:
    """Check whether key starts with prefix, element by element."""
    normalized_key = _normalize(key)
    normalized_prefix = _normalize(prefix)
    if len(normalized_prefix) > len(normalized_key):
        return False
    return normalized_key[: len(normalized_prefix)] == normalized_prefix


# =============================================================================
# Options and states
# =============================================================================

@dataclass
class QueryOptions(Generic[T]):
    """A cached read."""

    key: QueryKey
    fn: Callable[[], Awaitable[T]]
    # A disabled query never runs; it keeps whatever state it had.
    enabled: bool = True
    retry: Optional[RetryPolicy] = None
    retry_delay: Optional[RetryDelay] = None


@dataclass
class MutationOptions(Generic[V, T]):
    """An uncached write."""

    key: QueryKey
    fn: Callable[[V], Awaitable[T]]
    on_success: Optional[Callable[[T, V], Awaitable[None]]] = None


@dataclass
class InfiniteQueryOptions(Generic[P, T]):
    """A cached, paginated read. Each page is a list of items."""

    key: QueryKey
    fn: Callable[[P], Awaitable[List[T]]]
    initial_page_param: P
    # Return None when there is no page in that direction.
    get_next_page_param: Callable[[List[T], P], Optional[P]]
    get_previous_page_param: Callable[[List[T], P], Optional[P]]
    enabled: bool = True
    # Maximum number of pages kept in the window.
    max_pages: Optional[int] = None
    retry: Optional[RetryPolicy] = None
    retry_delay: Optional[RetryDelay] = None


@dataclass(frozen=True)
class QueryState(Generic[T]):
    """Snapshot of a query. A new snapshot replaces it on every change."""

    key: QueryKey
    status: QueryStatus = "idle"
    data: Optional[T] = None
    error: Optional[BaseException] = None
    failure_count: int = 0
    updated_at: float = 0.0
    is_stale: bool = False

    @property
    def is_idle(self) -> bool:
        return self.status == "idle"

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    def unwrap(self) -> T:
        """Return the data, or raise the stored error."""
        if self.error is not None:
            raise self.error
        if self.status != "success":
            raise RuntimeError(f"query {self.key!r} has no data (status: {self.status})")
        return self.data  # type: ignore[return-value]


@dataclass(frozen=True)
class InfiniteQueryState(Generic[P, T]):
    """Snapshot of an infinite query: pages and the params they were fetched with."""

    key: QueryKey
    status: QueryStatus = "idle"
    pages: Tuple[List[T], ...] = ()
    page_params: Tuple[P, ...] = ()
    error: Optional[BaseException] = None
    failure_count: int = 0
    updated_at: float = 0.0
    is_stale: bool = False

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @property
    def items(self) -> List[T]:
        """All items of the window, in page order."""
        return [item for page in self.pages for item in page]


AnyState = Union[QueryState[Any], InfiniteQueryState[Any, Any]]
S = TypeVar("S", bound=AnyState)


class _Failure:
    """Outcome of a call that exhausted its retries."""

    def __init__(self, error: Exception, failure_count: int) -> None:
        self.error = error
        self.failure_count = failure_count


# =============================================================================
# Cache
# =============================================================================

class QueryCache:
    """
    In-process cache for queries, infinite queries and mutations.

    Args:
        retry: default retry policy for reads, called with the number of
            failures so far and the last error
        retry_delay: default delay (seconds) before a retry, from the
            number of failures so far
    """

    def __init__(
        self,
        retry: RetryPolicy = default_retry,
        retry_delay: RetryDelay = default_retry_delay,
    ) -> None:
        self._retry = retry
        self._retry_delay = retry_delay
        self._entries: Dict[str, AnyState] = {}
        self._refetchers: Dict[str, Callable[[], Awaitable[AnyState]]] = {}
        self._in_flight: Dict[Tuple[str, str], "asyncio.Future[Any]"] = {}
        # Bumped on every invalidation or removal of a key. A run remembers the
        # generation it started in.
        self._generations: Dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def get_query_state(self, key: QueryKey) -> Optional[AnyState]:
        return self._entries.get(hash_key(key))

    def get_query_data(self, key: QueryKey) -> Any:
        state = self._entries.get(hash_key(key))
        if isinstance(state, QueryState):
            return state.data
        if isinstance(state, InfiniteQueryState):
            return state.pages
        return None

    def is_fetching(self, key: QueryKey) -> bool:
        key_hash = hash_key(key)
        return any(flight[0] == key_hash for flight in self._in_flight)

    def find_keys(self, prefix: QueryKey = ()) -> List[QueryKey]:
        return [state.key for state in self._entries.values() if key_matches(state.key, prefix)]

    def __len__(self) -> int:
        return len(self._entries)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate_queries(self, prefix: QueryKey = ()) -> int:
        """Mark every query under prefix as stale. Return how many were marked."""
        count = 0
        for key_hash, state in list(self._entries.items()):
            if key_matches(state.key, prefix):
                self._entries[key_hash] = replace(state, is_stale=True)
                self._bump(key_hash)
                count += 1
        logger.debug("invalidated %d queries under %r", count, prefix)
        return count

    async def refetch_queries(self, prefix: QueryKey = ()) -> List[AnyState]:
        """Refetch, concurrently, every stale query under prefix."""
        refetchers = [
            self._refetchers[key_hash]
            for key_hash, state in list(self._entries.items())
            if state.is_stale and key_matches(state.key, prefix) and key_hash in self._refetchers
        ]
        if not refetchers:
            return []
        return list(await asyncio.gather(*(refetch() for refetch in refetchers)))

    def remove_queries(self, prefix: QueryKey = ()) -> int:
        """Drop every query under prefix."""
        removed = [key_hash for key_hash, state in self._entries.items() if key_matches(state.key, prefix)]
        for key_hash in removed:
            del self._entries[key_hash]
            self._refetchers.pop(key_hash, None)
            self._bump(key_hash)
        return len(removed)

    def clear(self) -> None:
        for key_hash in self._entries:
            self._bump(key_hash)
        self._entries.clear()
        self._refetchers.clear()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def fetch_query(self, options: QueryOptions[T]) -> QueryState[T]:
        """
        Return the state of a query, fetching it when needed.

        A fresh successful state is returned as is. Errors do not propagate:
        they are stored on the returned state.
        """
        key_hash = hash_key(options.key)
        state = self._entries.get(key_hash)

        if not options.enabled:
            if isinstance(state, QueryState):
                return state
            return QueryState(key=options.key)

        if isinstance(state, QueryState) and state.is_success and not state.is_stale:
            return state
        if not isinstance(state, QueryState):
            self._entries[key_hash] = QueryState(key=options.key, status="pending")

        self._refetchers[key_hash] = lambda: self._start_query(key_hash, options)
        return await self._start_query(key_hash, options)

    def _start_query(self, key_hash: str, options: QueryOptions[T]) -> Awaitable[QueryState[T]]:
        # Reads only join a run started since the last invalidation.
        generation = self._generations.get(key_hash, 0)
        return self._shared(
            key_hash, f"query:{generation}", lambda: self._run_query(key_hash, options, generation)
        )

    async def _run_query(self, key_hash: str, options: QueryOptions[T], generation: int) -> QueryState[T]:
        previous = self._entries.get(key_hash)
        if not isinstance(previous, QueryState):
            previous = QueryState(key=options.key, status="pending")

        outcome = await self._call_with_retry(options.key, options.fn, options.retry, options.retry_delay)

        if isinstance(outcome, _Failure):
            state = replace(
                previous,
                status="error",
                error=outcome.error,
                failure_count=outcome.failure_count,
                is_stale=False,
            )
        else:
            state = QueryState(
                key=options.key,
                status="success",
                data=outcome,
                updated_at=time.time(),
            )

        return self._settle(key_hash, generation, state)

    # -------------------------------------------------------------------------
    # Infinite queries
    # -------------------------------------------------------------------------

    def infinite_query(self, options: InfiniteQueryOptions[P, T]) -> "InfiniteQuery[P, T]":
        """Get a handle over an infinite query. Nothing is fetched yet."""
        return InfiniteQuery(self, options)

    def _infinite_state(self, options: InfiniteQueryOptions[P, T]) -> InfiniteQueryState[P, T]:
        state = self._entries.get(hash_key(options.key))
        if isinstance(state, InfiniteQueryState):
            return state
        return InfiniteQueryState(key=options.key)

    async def _fetch_infinite(self, options: InfiniteQueryOptions[P, T]) -> InfiniteQueryState[P, T]:
        key_hash = hash_key(options.key)
        state = self._infinite_state(options)

        if not options.enabled:
            return state
        if state.is_success and not state.is_stale:
            return state
        if state.status == "idle":
            self._entries[key_hash] = replace(state, status="pending")

        self._refetchers[key_hash] = lambda: self._start_infinite(key_hash, options)
        return await self._start_infinite(key_hash, options)

    def _start_infinite(
        self, key_hash: str, options: InfiniteQueryOptions[P, T]
    ) -> Awaitable[InfiniteQueryState[P, T]]:
        generation = self._generations.get(key_hash, 0)
        return self._shared(
            key_hash, f"initial:{generation}", lambda: self._run_infinite_refetch(key_hash, options, generation)
        )

    async def _run_infinite_refetch(
        self, key_hash: str, options: InfiniteQueryOptions[P, T], generation: int
    ) -> InfiniteQueryState[P, T]:
        """(Re)fetch the whole window, starting from its first page param."""
        previous = self._infinite_state(options)

        param = previous.page_params[0] if previous.page_params else options.initial_page_param
        page_count = max(1, len(previous.pages))

        pages: List[List[T]] = []
        params: List[P] = []
        for _ in range(page_count):
            outcome = await self._call_with_retry(options.key, lambda: options.fn(param), options.retry, options.retry_delay)
            if isinstance(outcome, _Failure):
                state = replace(
                    previous,
                    status="error",
                    error=outcome.error,
                    failure_count=outcome.failure_count,
                    is_stale=False,
                )
                return self._settle(key_hash, generation, state)

            pages.append(outcome)
            params.append(param)
            next_param = options.get_next_page_param(outcome, param)
            if next_param is None:
                break
            param = next_param

        state = InfiniteQueryState(
            key=options.key,
            status="success",
            pages=tuple(pages),
            page_params=tuple(params),
            updated_at=time.time(),
        )
        return self._settle(key_hash, generation, state)

    async def _fetch_adjacent_page(
        self, options: InfiniteQueryOptions[P, T], direction: Literal["next", "previous"]
    ) -> InfiniteQueryState[P, T]:
        state = self._infinite_state(options)
        if not options.enabled:
            return state
        # Nothing loaded yet: the first page comes first.
        if not state.pages:
            return await self._fetch_infinite(options)

        key_hash = hash_key(options.key)
        return await self._shared(key_hash, direction, lambda: self._run_adjacent_page(key_hash, options, direction))

    async def _run_adjacent_page(
        self, key_hash: str, options: InfiniteQueryOptions[P, T], direction: Literal["next", "previous"]
    ) -> InfiniteQueryState[P, T]:
        state = self._infinite_state(options)
        if direction == "next":
            param = options.get_next_page_param(state.pages[-1], state.page_params[-1])
        else:
            param = options.get_previous_page_param(state.pages[0], state.page_params[0])
        if param is None:
            return state

        outcome = await self._call_with_retry(options.key, lambda: options.fn(param), options.retry, options.retry_delay)

        # Pages may have changed while the call was in flight.
        state = self._infinite_state(options)
        if isinstance(outcome, _Failure):
            state = replace(state, status="error", error=outcome.error, failure_count=outcome.failure_count)
            self._entries[key_hash] = state
            return state

        pages = list(state.pages)
        params = list(state.page_params)
        if direction == "next":
            pages.append(outcome)
            params.append(param)
            if options.max_pages and len(pages) > options.max_pages:
                del pages[0], params[0]
        else:
            pages.insert(0, outcome)
            params.insert(0, param)
            if options.max_pages and len(pages) > options.max_pages:
                del pages[-1], params[-1]

        state = replace(
            state,
            status="success",
            pages=tuple(pages),
            page_params=tuple(params),
            error=None,
            failure_count=0,
            updated_at=time.time(),
        )
        self._entries[key_hash] = state
        return state

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def execute_mutation(self, options: MutationOptions[V, T], variables: V) -> T:
        """Run a mutation. Errors propagate; on success the success hook runs first."""
        logger.debug("running mutation %r", options.key)
        result = await options.fn(variables)
        if options.on_success is not None:
            await options.on_success(result, variables)
        return result

    # -------------------------------------------------------------------------
    # Internal Methods
    # -------------------------------------------------------------------------

    async def _shared(self, key_hash: str, kind: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run factory once per (key, kind) at a time; concurrent callers share the result."""
        flight_key = (key_hash, kind)
        future = self._in_flight.get(flight_key)
        if future is None:
            future = asyncio.ensure_future(self._track(flight_key, factory))
            self._in_flight[flight_key] = future
        # A cancelled caller must not cancel the call other callers wait on.
        return await asyncio.shield(future)

    async def _track(self, flight_key: Tuple[str, str], factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await factory()
        finally:
            self._in_flight.pop(flight_key, None)

    def _bump(self, key_hash: str) -> None:
        self._generations[key_hash] = self._generations.get(key_hash, 0) + 1

    def _settle(self, key_hash: str, generation: int, state: S) -> S:
        """Store the outcome of a run that started in the given generation."""
        if self._generations.get(key_hash, 0) == generation:
            self._entries[key_hash] = state
            return state

        # Invalidated or removed while in flight: the outcome is already stale,
        # and it must not replace a fresher entry nor bring back a removed one.
        state = replace(state, is_stale=True)
        current = self._entries.get(key_hash)
        if current is not None and (current.is_stale or current.status in ("pending", "error")):
            self._entries[key_hash] = state
        return state

    async def _call_with_retry(
        self,
        key: QueryKey,
        fn: Callable[[], Awaitable[T]],
        retry: Optional[RetryPolicy],
        retry_delay: Optional[RetryDelay],
    ) -> Union[T, _Failure]:
        """Call fn, retrying on failure while the policy allows it."""
        should_retry = retry or self._retry
        delay_for = retry_delay or self._retry_delay
        failure_count = 0

        while True:
            try:
                return await fn()
            except Exception as error:
                failure_count += 1
                if not should_retry(failure_count, error):
                    logger.debug("query %r failed after %d attempt(s): %r", key, failure_count, error)
                    return _Failure(error, failure_count)

                delay = delay_for(failure_count)
                logger.debug("query %r failed (%r), retrying in %.2fs", key, error, delay)
                await asyncio.sleep(delay)


class InfiniteQuery(Generic[P, T]):
    """Handle over an infinite query stored in a QueryCache."""

    def __init__(self, cache: QueryCache, options: InfiniteQueryOptions[P, T]) -> None:
        self._cache = cache
        self._options = options

    @property
    def key(self) -> QueryKey:
        return self._options.key

    @property
    def state(self) -> InfiniteQueryState[P, T]:
        return self._cache._infinite_state(self._options)

    @property
    def pages(self) -> Tuple[List[T], ...]:
        return self.state.pages

    @property
    def page_params(self) -> Tuple[P, ...]:
        return self.state.page_params

    @property
    def items(self) -> List[T]:
        return self.state.items

    @property
    def has_next_page(self) -> bool:
        state = self.state
        if not state.pages:
            return False
        return self._options.get_next_page_param(state.pages[-1], state.page_params[-1]) is not None

    @property
    def has_previous_page(self) -> bool:
        state = self.state
        if not state.pages:
            return False
        return self._options.get_previous_page_param(state.pages[0], state.page_params[0]) is not None

    async def fetch(self) -> InfiniteQueryState[P, T]:
        """Fetch the first page, or the whole window when it is stale."""
        return await self._cache._fetch_infinite(self._options)

    async def fetch_next_page(self) -> InfiniteQueryState[P, T]:
        return await self._cache._fetch_adjacent_page(self._options, "next")

    async def fetch_previous_page(self) -> InfiniteQueryState[P, T]:
        return await self._cache._fetch_adjacent_page(self._options, "previous")
