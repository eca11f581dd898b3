"""QueryCache - per-key fetch state with deduplication and staleness.

Provides:
- QueryCache.ensure(): subscribe to a key, fetching when stale
- QueryCache.prefetch() / refetch() / wait(): awaitable fetch helpers
- QueryCache.invalidate(): mark entries stale and refetch the observed ones
- QueryCache.set_data() / cancel(): direct writes used by mutations
- get_state(), get_data(), get_all(), add_listener(): read side

Every state change runs synchronously between awaits. Overlapping work on a
key is resolved with a per-entry generation counter: a fetch commits only if
the generation it captured at start is still current.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, cast

from querylab.duration import parse_duration, parse_stale_time
from querylab.exceptions import FetchError, StaleGenerationDiscard, as_fetch_error
from querylab.keys import canonicalize_key, matching_keys, normalize_key
from querylab.network import NetworkSimulator
from querylab.subscription import StateCallback, Subscription
from querylab.types import (
    NEVER,
    Duration,
    Fetcher,
    FetchStatus,
    KeySegment,
    QueryKey,
    QueryOptions,
    QueryState,
    QueryStatus,
    StaleTime,
)

logger = logging.getLogger(__name__)

Predicate = Callable[[QueryState[Any]], bool]
InvalidateTarget = QueryKey | Predicate | None


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class QueryEntry:
    """Mutable cache entry. Only QueryCache touches it."""

    key: tuple[KeySegment, ...]
    canonical: str
    status: QueryStatus = "idle"
    data: Any = None
    error: FetchError | None = None
    fetch_status: FetchStatus = "idle"
    data_updated_at: int | None = None
    generation: int = 0
    invalidated: bool = False
    options: QueryOptions = field(default_factory=QueryOptions)
    fetcher: Fetcher | None = None
    subscribers: list[Subscription[Any]] = field(default_factory=list)
    in_flight: asyncio.Task[QueryState[Any]] | None = None
    status_before_fetch: QueryStatus = "idle"


class QueryCache:
    """In-memory query cache.

    Usage:
        cache = QueryCache(network=NetworkSimulator(latency="300ms"))
        sub = cache.ensure(["todos"], source.get_todos, stale_time="5s")
        state = await sub
        cache.invalidate(["todos"])
    """

    def __init__(
        self,
        *,
        network: NetworkSimulator | None = None,
        default_stale_time: Duration | StaleTime = 0,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._entries: dict[str, QueryEntry] = {}
        self._listeners: list[StateCallback] = []
        self._network = network if network is not None else NetworkSimulator()
        self._default_stale_time = parse_stale_time(default_stale_time)
        self._clock = clock or _now_ms

    @property
    def network(self) -> NetworkSimulator:
        return self._network

    # -------------------------------------------------------------------------
    # Subscribing and fetching
    # -------------------------------------------------------------------------

    def ensure(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        *,
        stale_time: Duration | StaleTime | None = None,
        refetch_on_focus: bool = False,
        refetch_interval: Duration = 0,
        retry: int = 0,
        enabled: bool = True,
        on_change: StateCallback | None = None,
    ) -> Subscription[Any]:
        """Subscribe to ``key``, fetching if the cached data is stale.

        A fetch already in flight for the key is joined rather than
        duplicated. With ``enabled=False`` the subscription only observes:
        nothing fetches the key on its behalf, but ``refetch()`` still works.
        Must be called with a running event loop.
        """
        interval = parse_duration(refetch_interval)
        entry = self._entry_for(key)
        self._configure(entry, fetcher, stale_time, refetch_on_focus, retry)

        subscription: Subscription[Any] = Subscription(
            self, entry.key, on_change, enabled=enabled, refetch_interval_ms=interval
        )
        entry.subscribers.append(subscription)
        self._notify(entry)

        if enabled:
            self._fetch_if_stale(entry)
        return subscription

    async def prefetch(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        *,
        stale_time: Duration | StaleTime | None = None,
        refetch_on_focus: bool = False,
        retry: int = 0,
    ) -> QueryState[Any]:
        """Populate ``key`` without subscribing to it."""
        entry = self._entry_for(key)
        self._configure(entry, fetcher, stale_time, refetch_on_focus, retry)
        self._fetch_if_stale(entry)
        return await self.wait(entry.key)

    async def refetch(self, key: QueryKey) -> QueryState[Any]:
        """Fetch ``key`` now, regardless of staleness, and wait for the result."""
        entry = self._require(key)
        self._join_or_start(entry)
        return await self.wait(entry.key)

    async def wait(self, key: QueryKey) -> QueryState[Any]:
        """Wait until no fetch is in flight for ``key``; return its state."""
        entry = self._require(key)
        while entry.in_flight is not None:
            await asyncio.wait([entry.in_flight])
        return self._state(entry)

    # -------------------------------------------------------------------------
    # Invalidation and direct writes
    # -------------------------------------------------------------------------

    def invalidate(
        self, target: InvalidateTarget = None, *, exact: bool = False
    ) -> list[asyncio.Task[QueryState[Any]]]:
        """Mark entries stale and refetch those with enabled subscribers.

        ``target`` is a key (prefix match unless ``exact``), a predicate over
        QueryState, or None for every entry. Returns the fetches started or
        joined, so callers may await them.
        """
        tasks = []
        for entry in self._match(target, exact):
            entry.invalidated = True
            if self._is_observed(entry) and entry.fetcher is not None:
                tasks.append(self._join_or_start(entry))
            else:
                self._notify(entry)
        return tasks

    def set_data(self, key: QueryKey, updater: Any) -> Any:
        """Write ``key`` directly, bypassing the network.

        ``updater`` is either the new value or a callable ``old -> new``. The
        write supersedes any in-flight fetch and leaves ``data_updated_at``
        untouched: only fetched data counts as confirmed.
        """
        entry = self._entry_for(key)
        value = updater(entry.data) if callable(updater) else updater
        self._bump(entry)
        entry.data = value
        self._notify(entry)
        return value

    def cancel(self, key: QueryKey, *, exact: bool = False) -> None:
        """Drop in-flight fetches without refetching.

        Matches ``key`` and, unless ``exact``, every key it prefixes. Results
        of the dropped fetches are discarded when they arrive.
        """
        for entry in self._match(key, exact):
            self._bump(entry)
            self._notify(entry)

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def get_state(self, key: QueryKey) -> QueryState[Any] | None:
        entry = self._entries.get(canonicalize_key(key))
        return self._state(entry) if entry is not None else None

    def get_data(self, key: QueryKey) -> Any | None:
        entry = self._entries.get(canonicalize_key(key))
        return entry.data if entry is not None else None

    def get_all(self) -> list[QueryState[Any]]:
        return [self._state(entry) for entry in self._entries.values()]

    def is_stale(self, key: QueryKey) -> bool:
        entry = self._entries.get(canonicalize_key(key))
        return True if entry is None else self._is_stale(entry)

    def add_listener(self, listener: StateCallback) -> Callable[[], None]:
        """Observe every state change in the cache. Returns a remove callable."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def __contains__(self, key: QueryKey) -> bool:
        return canonicalize_key(key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _entry_for(self, key: QueryKey) -> QueryEntry:
        canonical = canonicalize_key(key)
        entry = self._entries.get(canonical)
        if entry is None:
            entry = QueryEntry(
                key=normalize_key(key),
                canonical=canonical,
                options=QueryOptions(stale_time=self._default_stale_time),
            )
            self._entries[canonical] = entry
        return entry

    def _require(self, key: QueryKey) -> QueryEntry:
        canonical = canonicalize_key(key)
        try:
            return self._entries[canonical]
        except KeyError:
            raise KeyError(f"No cache entry for {canonical!r}") from None

    def _configure(
        self,
        entry: QueryEntry,
        fetcher: Fetcher,
        stale_time: Duration | StaleTime | None,
        refetch_on_focus: bool,
        retry: int,
    ) -> None:
        if retry < 0:
            raise ValueError("retry must be >= 0")
        entry.fetcher = fetcher
        entry.options = QueryOptions(
            stale_time=(
                parse_stale_time(stale_time)
                if stale_time is not None
                else self._default_stale_time
            ),
            refetch_on_focus=refetch_on_focus,
            retry=retry,
        )

    def _match(self, target: InvalidateTarget, exact: bool) -> list[QueryEntry]:
        if target is None:
            return list(self._entries.values())
        if callable(target):
            predicate = cast(Predicate, target)
            return [e for e in self._entries.values() if predicate(self._state(e))]
        keys = matching_keys(
            target, (e.key for e in self._entries.values()), exact=exact
        )
        return [self._entries[canonicalize_key(k)] for k in keys]

    def _is_observed(self, entry: QueryEntry) -> bool:
        """True if some subscriber wants the key fetched automatically."""
        return any(s.enabled for s in entry.subscribers)

    def _refetch_interval(self, entry: QueryEntry) -> int:
        intervals = [
            s.refetch_interval_ms
            for s in entry.subscribers
            if s.enabled and s.refetch_interval_ms > 0
        ]
        return min(intervals, default=0)

    def _is_stale(self, entry: QueryEntry) -> bool:
        if entry.invalidated or entry.data_updated_at is None:
            return True
        stale_time = entry.options.stale_time
        if stale_time == NEVER:
            return False
        return self._clock() - entry.data_updated_at > cast(int, stale_time)

    def _state(self, entry: QueryEntry) -> QueryState[Any]:
        return QueryState(
            key=entry.key,
            status=entry.status,
            data=entry.data,
            error=entry.error,
            fetch_status=entry.fetch_status,
            data_updated_at=entry.data_updated_at,
            stale_time=entry.options.stale_time,
            generation=entry.generation,
            subscriber_count=len(entry.subscribers),
            is_stale=self._is_stale(entry),
            refetch_on_focus=entry.options.refetch_on_focus,
            refetch_interval_ms=self._refetch_interval(entry),
            enabled=not entry.subscribers or self._is_observed(entry),
        )

    def _notify(self, entry: QueryEntry) -> None:
        state = self._state(entry)
        for subscription in list(entry.subscribers):
            try:
                subscription.deliver(state)
            except Exception:
                logger.exception(
                    "Subscriber callback failed for %s", entry.canonical
                )
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Cache listener failed for %s", entry.canonical)

    def _unsubscribe(self, subscription: Subscription[Any]) -> None:
        entry = self._entries.get(canonicalize_key(subscription.key))
        if entry is not None and subscription in entry.subscribers:
            entry.subscribers.remove(subscription)
            self._notify(entry)

    def _bump(self, entry: QueryEntry) -> None:
        """Advance the generation, detaching any in-flight fetch."""
        entry.generation += 1
        if entry.in_flight is not None:
            logger.debug(
                "Detached fetch for %s at generation %d",
                entry.canonical,
                entry.generation,
            )
            entry.in_flight = None
            entry.fetch_status = "idle"
            if entry.status == "pending":
                entry.status = entry.status_before_fetch

    def _fetch_if_stale(self, entry: QueryEntry) -> None:
        if entry.in_flight is None and not self._is_stale(entry):
            return
        self._join_or_start(entry)

    def _join_or_start(self, entry: QueryEntry) -> asyncio.Task[QueryState[Any]]:
        if entry.in_flight is not None:
            logger.debug("Joining in-flight fetch for %s", entry.canonical)
            return entry.in_flight
        return self._start_fetch(entry)

    def _start_fetch(self, entry: QueryEntry) -> asyncio.Task[QueryState[Any]]:
        if entry.fetcher is None:
            raise ValueError(f"No fetcher registered for {entry.canonical!r}")
        self._bump(entry)
        generation = entry.generation
        entry.fetch_status = "fetching"
        entry.status_before_fetch = entry.status
        if entry.data is None:
            entry.status = "pending"

        task = asyncio.get_running_loop().create_task(
            self._run_fetch(entry, generation, entry.fetcher, entry.options.retry)
        )
        entry.in_flight = task
        logger.debug("Fetching %s (generation %d)", entry.canonical, generation)
        self._notify(entry)
        return task

    async def _run_fetch(
        self, entry: QueryEntry, generation: int, fetcher: Fetcher, retry: int
    ) -> QueryState[Any]:
        try:
            error: FetchError | None = None
            for attempt in range(retry + 1):
                if attempt:
                    logger.debug(
                        "Retrying %s (attempt %d)", entry.canonical, attempt + 1
                    )
                try:
                    data = await self._network.run(entry.canonical, fetcher)
                except Exception as exc:
                    error = as_fetch_error(exc, entry.canonical)
                    if entry.generation != generation:
                        break
                    continue
                return self._commit_success(entry, generation, data)
            return self._commit_error(entry, generation, cast(FetchError, error))
        except StaleGenerationDiscard as discard:
            logger.debug("%s", discard)
            return self._state(entry)
        finally:
            # Only reached with a live fetch when the task itself was cancelled
            if entry.generation == generation and entry.in_flight is not None:
                entry.in_flight = None
                entry.fetch_status = "idle"
                if entry.status == "pending":
                    entry.status = entry.status_before_fetch
                self._notify(entry)

    def _check_generation(self, entry: QueryEntry, generation: int) -> None:
        if entry.generation != generation:
            raise StaleGenerationDiscard(
                entry.canonical, generation, entry.generation
            )

    def _commit_success(
        self, entry: QueryEntry, generation: int, data: Any
    ) -> QueryState[Any]:
        self._check_generation(entry, generation)
        entry.data = data
        entry.error = None
        entry.status = "success"
        entry.fetch_status = "idle"
        entry.data_updated_at = self._clock()
        entry.invalidated = False
        entry.in_flight = None
        logger.debug("Committed %s (generation %d)", entry.canonical, generation)
        self._notify(entry)
        return self._state(entry)

    def _commit_error(
        self, entry: QueryEntry, generation: int, error: FetchError
    ) -> QueryState[Any]:
        self._check_generation(entry, generation)
        # data is left untouched: the last good value stays servable
        entry.error = error
        entry.status = "error"
        entry.fetch_status = "idle"
        entry.in_flight = None
        logger.debug("Fetch failed for %s: %s", entry.canonical, error)
        self._notify(entry)
        return self._state(entry)


__all__ = ["QueryCache", "QueryEntry"]
