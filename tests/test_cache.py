"""Tests for QueryCache."""

import asyncio
import dataclasses
import logging
from typing import Any

import pytest

from querylab import FetchError, NetworkSimulator, QueryCache, QueryState


TODOS = ["todos"]


class Counter:
    """Fetcher that counts calls and returns a versioned payload."""

    def __init__(self, payload: Any = "data") -> None:
        self.calls = 0
        self.payload = payload

    async def __call__(self) -> Any:
        self.calls += 1
        return {"value": self.payload, "version": self.calls}


class TestEnsure:
    """Tests for ensure() fetch decisions."""

    async def test_first_ensure_fetches(self, cache: QueryCache) -> None:
        fetch = Counter()
        state = await cache.ensure(TODOS, fetch)

        assert fetch.calls == 1
        assert state.status == "success"
        assert state.data == {"value": "data", "version": 1}
        assert state.fetch_status == "idle"
        assert state.subscriber_count == 1

    async def test_fresh_entry_is_served_from_cache(self, cache: QueryCache) -> None:
        fetch = Counter()
        await cache.ensure(TODOS, fetch, stale_time="10s")

        state = await cache.ensure(TODOS, fetch, stale_time="10s")

        assert fetch.calls == 1
        assert state.data["version"] == 1
        assert state.is_stale is False

    async def test_stale_entry_refetches(
        self, cache: QueryCache, clock: Any
    ) -> None:
        fetch = Counter()
        await cache.ensure(TODOS, fetch, stale_time=100)

        clock.advance(100)
        await cache.ensure(TODOS, fetch, stale_time=100)
        assert fetch.calls == 1  # exactly at the boundary is still fresh

        clock.advance(1)
        state = await cache.ensure(TODOS, fetch, stale_time=100)
        assert fetch.calls == 2
        assert state.data["version"] == 2

    async def test_never_stale_time_pins_data(
        self, cache: QueryCache, clock: Any
    ) -> None:
        fetch = Counter()
        await cache.ensure(TODOS, fetch, stale_time="never")

        clock.advance(10**9)
        state = await cache.ensure(TODOS, fetch, stale_time="never")

        assert fetch.calls == 1
        assert state.is_stale is False

    async def test_concurrent_ensure_fetches_once(self, cache: QueryCache) -> None:
        fetch = Counter()
        first = cache.ensure(TODOS, fetch)
        second = cache.ensure(TODOS, fetch)

        a, b = await asyncio.gather(first, second)

        assert fetch.calls == 1
        assert a.data == b.data
        assert b.subscriber_count == 2

    async def test_overlapping_ensure_logs_one_pending_call(
        self, cache: QueryCache, network: NetworkSimulator
    ) -> None:
        fetch = Counter()
        cache.ensure(["posts"], fetch)
        await cache.ensure(["posts"], fetch)

        pending = [e for e in network.log.for_key(["posts"]) if e.phase == "pending"]
        assert len(pending) == 1

    async def test_status_is_pending_until_first_result(
        self, cache: QueryCache
    ) -> None:
        sub = cache.ensure(TODOS, Counter())

        assert sub.state.status == "pending"
        assert sub.state.fetch_status == "fetching"
        assert sub.state.is_fetching
        await sub

    async def test_entry_without_data_is_stale(self, cache: QueryCache) -> None:
        assert cache.is_stale(TODOS)
        cache.set_data(TODOS, ["local"])
        assert cache.is_stale(TODOS)

    async def test_negative_retry_rejected(self, cache: QueryCache) -> None:
        with pytest.raises(ValueError, match="retry"):
            cache.ensure(TODOS, Counter(), retry=-1)


class TestFailures:
    """Tests for error commits."""

    async def test_error_keeps_previous_data(self, cache: QueryCache) -> None:
        fail = False

        async def fetch() -> list[str]:
            if fail:
                raise ValueError("backend down")
            return ["a"]

        await cache.ensure(TODOS, fetch)
        fail = True
        cache.invalidate(TODOS)
        state = await cache.wait(TODOS)

        assert state.status == "error"
        assert state.fetch_status == "idle"
        assert state.data == ["a"]
        assert isinstance(state.error, FetchError)
        assert isinstance(state.error.__cause__, ValueError)

    async def test_error_without_data(self, cache: QueryCache) -> None:
        async def fetch() -> None:
            raise FetchError("nope")

        state = await cache.ensure(TODOS, fetch)

        assert state.status == "error"
        assert state.data is None
        assert str(state.error) == "nope"
        assert state.error.key == "todos"

    async def test_retry_once(self, cache: QueryCache) -> None:
        calls = 0

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ValueError("first attempt fails")
            return "ok"

        state = await cache.ensure(TODOS, flaky, retry=1)

        assert calls == 2
        assert state.status == "success"
        assert state.data == "ok"

    async def test_no_retry_by_default(self, cache: QueryCache) -> None:
        calls = 0

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            raise ValueError("always fails")

        state = await cache.ensure(TODOS, flaky)

        assert calls == 1
        assert state.status == "error"


class TestInvalidate:
    """Tests for invalidate()."""

    async def test_invalidate_refetches_observed_entries(
        self, cache: QueryCache
    ) -> None:
        fetch = Counter()
        await cache.ensure(TODOS, fetch, stale_time="never")

        tasks = cache.invalidate(TODOS)
        assert len(tasks) == 1
        states = await asyncio.gather(*tasks)

        assert fetch.calls == 2
        assert states[0].data["version"] == 2
        assert states[0].is_stale is False

    async def test_invalidate_without_subscribers_only_marks_stale(
        self, cache: QueryCache
    ) -> None:
        fetch = Counter()
        await cache.prefetch(TODOS, fetch, stale_time="never")

        assert cache.invalidate(TODOS) == []
        assert fetch.calls == 1
        assert cache.is_stale(TODOS)

        await cache.prefetch(TODOS, fetch, stale_time="never")
        assert fetch.calls == 2

    async def test_prefix_and_exact_matching(self, cache: QueryCache) -> None:
        todos, todo_1, posts = Counter(), Counter(), Counter()
        await cache.ensure(["todos"], todos, stale_time="never")
        await cache.ensure(["todos", 1], todo_1, stale_time="never")
        await cache.ensure(["posts"], posts, stale_time="never")

        await asyncio.gather(*cache.invalidate(["todos"]))
        assert (todos.calls, todo_1.calls, posts.calls) == (2, 2, 1)

        await asyncio.gather(*cache.invalidate(["todos"], exact=True))
        assert (todos.calls, todo_1.calls, posts.calls) == (3, 2, 1)

    async def test_predicate_and_all(self, cache: QueryCache) -> None:
        todos, posts = Counter(), Counter()
        await cache.ensure(["todos"], todos, stale_time="never")
        await cache.ensure(["posts"], posts, stale_time="never")

        await asyncio.gather(*cache.invalidate(lambda s: s.key == ("posts",)))
        assert (todos.calls, posts.calls) == (1, 2)

        await asyncio.gather(*cache.invalidate())
        assert (todos.calls, posts.calls) == (2, 3)

    async def test_invalidate_joins_pending_fetch(self, cache: QueryCache) -> None:
        fetch = Counter()
        sub = cache.ensure(TODOS, fetch)
        generation = sub.state.generation

        tasks = cache.invalidate(TODOS)
        await asyncio.gather(*tasks)

        assert fetch.calls == 1
        assert sub.state.generation == generation


class TestDirectWrites:
    """Tests for set_data() and cancel()."""

    async def test_set_data_value_and_updater(self, cache: QueryCache) -> None:
        cache.set_data(TODOS, [1, 2])
        cache.set_data(TODOS, lambda old: [*old, 3])
        assert cache.get_data(TODOS) == [1, 2, 3]

    async def test_set_data_keeps_confirmed_timestamp(
        self, cache: QueryCache, clock: Any
    ) -> None:
        state = await cache.ensure(TODOS, Counter())
        updated_at = state.data_updated_at

        clock.advance(50)
        cache.set_data(TODOS, "optimistic")

        after = cache.get_state(TODOS)
        assert after is not None
        assert after.data == "optimistic"
        assert after.data_updated_at == updated_at
        assert after.generation == state.generation + 1

    async def test_set_data_supersedes_in_flight_fetch(
        self, cache: QueryCache
    ) -> None:
        gate = asyncio.Event()

        async def slow() -> str:
            await gate.wait()
            return "late server value"

        sub = cache.ensure(TODOS, slow)
        await asyncio.sleep(0)
        cache.set_data(TODOS, "newer")
        gate.set()
        await asyncio.sleep(0.01)

        assert sub.state.data == "newer"
        assert sub.state.fetch_status == "idle"

    async def test_cancel_discards_result(self, cache: QueryCache) -> None:
        gate = asyncio.Event()

        async def slow() -> str:
            await gate.wait()
            return "late"

        sub = cache.ensure(TODOS, slow)
        await asyncio.sleep(0)
        cache.cancel(TODOS)

        assert sub.state.fetch_status == "idle"
        assert sub.state.status == "idle"

        gate.set()
        await asyncio.sleep(0.01)

        assert sub.state.data is None
        assert sub.state.status == "idle"
        assert sub.state.error is None

    async def test_cancel_unknown_key_is_noop(self, cache: QueryCache) -> None:
        cache.cancel(["missing"])
        assert ["missing"] not in cache

    async def test_cancel_matches_keys_underneath(self, cache: QueryCache) -> None:
        gate = asyncio.Event()

        async def slow() -> str:
            await gate.wait()
            return "late"

        detail = cache.ensure(["todos", 1], slow)
        posts = cache.ensure(["posts"], slow)
        await asyncio.sleep(0)

        cache.cancel(["todos"], exact=True)
        assert detail.state.is_fetching

        cache.cancel(["todos"])
        assert not detail.state.is_fetching
        assert posts.state.is_fetching

        gate.set()
        await posts
        await asyncio.sleep(0.01)

        assert detail.state.data is None
        assert posts.state.data == "late"


class TestDisabled:
    """Tests for subscriptions that opt out of automatic fetching."""

    async def test_disabled_ensure_does_not_fetch(self, cache: QueryCache) -> None:
        fetch = Counter()
        sub = cache.ensure(TODOS, fetch, enabled=False)
        state = await sub

        assert fetch.calls == 0
        assert state.status == "idle"
        assert state.subscriber_count == 1
        assert state.enabled is False

    async def test_refetch_on_disabled_entry_fetches(self, cache: QueryCache) -> None:
        fetch = Counter()
        sub = cache.ensure(TODOS, fetch, enabled=False)

        state = await cache.refetch(TODOS)

        assert fetch.calls == 1
        assert state.status == "success"
        assert sub.state.data == {"value": "data", "version": 1}

    async def test_invalidate_skips_disabled_entries(self, cache: QueryCache) -> None:
        fetch = Counter()
        cache.ensure(TODOS, fetch, enabled=False)
        await cache.refetch(TODOS)

        assert cache.invalidate(TODOS) == []
        assert fetch.calls == 1
        assert cache.is_stale(TODOS)

    async def test_enabled_subscriber_triggers_fetch(self, cache: QueryCache) -> None:
        fetch = Counter()
        cache.ensure(TODOS, fetch, enabled=False)
        state = await cache.ensure(TODOS, fetch)

        assert fetch.calls == 1
        assert state.enabled is True
        assert state.status == "success"


class TestSubscriptions:
    """Tests for subscriber callbacks and listeners."""

    async def test_callbacks_follow_state_changes(self, cache: QueryCache) -> None:
        seen: list[QueryState] = []
        sub = cache.ensure(TODOS, Counter(), on_change=seen.append)
        await sub

        statuses = [(s.status, s.fetch_status) for s in seen]
        assert statuses[-2:] == [("pending", "fetching"), ("success", "idle")]

        count = len(seen)
        sub.unsubscribe()
        sub.unsubscribe()
        cache.set_data(TODOS, "after")
        assert len(seen) == count
        assert cache.get_state(TODOS).subscriber_count == 0  # type: ignore[union-attr]

    async def test_context_manager_unsubscribes(self, cache: QueryCache) -> None:
        with cache.ensure(TODOS, Counter()) as sub:
            await sub
            assert sub.active
        assert not sub.active
        assert sub.state.subscriber_count == 0

    async def test_failing_callback_is_logged(
        self, cache: QueryCache, caplog: pytest.LogCaptureFixture
    ) -> None:
        def broken(state: QueryState) -> None:
            raise RuntimeError("render bug")

        with caplog.at_level(logging.ERROR, logger="querylab.cache"):
            state = await cache.ensure(TODOS, Counter(), on_change=broken)

        assert state.status == "success"
        assert "Subscriber callback failed" in caplog.text

    async def test_listener_sees_all_keys(self, cache: QueryCache) -> None:
        keys: set[tuple] = set()
        remove = cache.add_listener(lambda s: keys.add(s.key))

        await cache.ensure(["todos"], Counter())
        await cache.ensure(["posts"], Counter())
        remove()
        cache.set_data(["users"], [])

        assert keys == {("todos",), ("posts",)}

    async def test_snapshots_are_frozen(self, cache: QueryCache) -> None:
        state = await cache.ensure(TODOS, Counter())
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.status = "idle"  # type: ignore[misc]


class TestReadSide:
    """Tests for prefetch(), refetch(), wait() and accessors."""

    async def test_prefetch_does_not_subscribe(self, cache: QueryCache) -> None:
        state = await cache.prefetch(TODOS, Counter())
        assert state.status == "success"
        assert state.subscriber_count == 0

    async def test_refetch_ignores_freshness(self, cache: QueryCache) -> None:
        fetch = Counter()
        await cache.ensure(TODOS, fetch, stale_time="never")
        state = await cache.refetch(TODOS)
        assert fetch.calls == 2
        assert state.data["version"] == 2

    async def test_wait_unknown_key(self, cache: QueryCache) -> None:
        with pytest.raises(KeyError, match="missing"):
            await cache.wait(["missing"])

    async def test_get_all(self, cache: QueryCache) -> None:
        await cache.ensure(["todos"], Counter())
        cache.set_data(["posts"], [])
        assert {s.key for s in cache.get_all()} == {("todos",), ("posts",)}
        assert len(cache) == 2
        assert cache.get_state(["users"]) is None
        assert cache.get_data(["users"]) is None
