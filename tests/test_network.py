"""Tests for the network simulator and its log."""

import asyncio
import random
import time

import pytest

from querylab import (
    MemoryDataSource,
    NetworkLog,
    NetworkLogEntry,
    NetworkSimulator,
    SimulatedNetworkError,
)


def _entry(i: int) -> NetworkLogEntry:
    return NetworkLogEntry(timestamp=i, key=f"k{i}", phase="pending")


class TestNetworkLog:
    """Tests for the ring buffer."""

    def test_keeps_the_most_recent_fifty_in_order(self) -> None:
        log = NetworkLog()
        for i in range(60):
            log.append(_entry(i))

        assert len(log) == 50
        assert [e.timestamp for e in log.entries()] == list(range(10, 60))

    def test_custom_capacity(self) -> None:
        log = NetworkLog(capacity=3)
        for i in range(5):
            log.append(_entry(i))
        assert [e.timestamp for e in log] == [2, 3, 4]
        assert log.capacity == 3

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError, match="capacity"):
            NetworkLog(capacity=0)

    def test_subscribe_and_unsubscribe(self) -> None:
        log = NetworkLog()
        seen: list[NetworkLogEntry] = []
        unsubscribe = log.subscribe(seen.append)

        log.append(_entry(1))
        unsubscribe()
        log.append(_entry(2))

        assert [e.timestamp for e in seen] == [1]

    def test_failing_listener_does_not_block_append(self) -> None:
        log = NetworkLog()

        def broken(entry: NetworkLogEntry) -> None:
            raise RuntimeError("listener bug")

        log.subscribe(broken)
        log.append(_entry(1))
        assert len(log) == 1

    def test_clear(self) -> None:
        log = NetworkLog()
        log.append(_entry(1))
        log.clear()
        assert log.entries() == []


class TestNetworkSimulatorRun:
    """Tests for NetworkSimulator.run()."""

    async def test_logs_pending_then_success(self, network: NetworkSimulator) -> None:
        async def op() -> str:
            return "ok"

        result = await network.run(["todos"], op)

        assert result == "ok"
        phases = [(e.key, e.phase) for e in network.log.entries()]
        assert phases == [("todos", "pending"), ("todos", "success")]
        assert network.log.entries()[0].duration_ms is None
        assert network.log.entries()[1].duration_ms is not None

    async def test_full_failure_rate_skips_operation(self) -> None:
        network = NetworkSimulator(failure_rate=1.0)
        called = False

        async def op() -> str:
            nonlocal called
            called = True
            return "ok"

        with pytest.raises(SimulatedNetworkError):
            await network.run(["todos"], op)

        assert called is False
        assert [e.phase for e in network.log] == ["pending", "error"]

    async def test_operation_error_is_logged_and_raised(
        self, network: NetworkSimulator
    ) -> None:
        async def op() -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await network.run(["posts"], op)

        assert [e.phase for e in network.log.for_key(["posts"])] == [
            "pending",
            "error",
        ]

    async def test_cancellation_is_logged_as_error(self) -> None:
        network = NetworkSimulator(latency="1s")

        async def op() -> str:
            return "ok"

        task = asyncio.create_task(network.run(["todos"], op))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [e.phase for e in network.log] == ["pending", "error"]

    async def test_latency_delays_result(self) -> None:
        network = NetworkSimulator(latency="30ms")

        async def op() -> str:
            return "ok"

        started = time.monotonic()
        await network.run(["todos"], op)
        assert time.monotonic() - started >= 0.025

    async def test_seeded_failures_are_reproducible(self) -> None:
        async def op() -> str:
            return "ok"

        async def outcomes(seed: int) -> list[bool]:
            network = NetworkSimulator(failure_rate=0.5, rng=random.Random(seed))
            results = []
            for _ in range(20):
                try:
                    await network.run(["x"], op)
                    results.append(True)
                except SimulatedNetworkError:
                    results.append(False)
            return results

        first = await outcomes(7)
        assert first == await outcomes(7)
        assert True in first and False in first


class TestNetworkSimulatorSettings:
    """Tests for validation and configuration."""

    def test_failure_rate_bounds(self) -> None:
        with pytest.raises(ValueError, match="failure_rate"):
            NetworkSimulator(failure_rate=1.5)
        with pytest.raises(ValueError, match="failure_rate"):
            NetworkSimulator(failure_rate=-0.1)

    def test_latency_forms(self) -> None:
        assert NetworkSimulator(latency="2s").latency == (2000, 2000)
        assert NetworkSimulator(latency=("100ms", "1s")).latency == (100, 1000)
        with pytest.raises(ValueError, match="latency range"):
            NetworkSimulator(latency=(500, 100))

    def test_configure(self) -> None:
        network = NetworkSimulator()
        network.configure(latency=250, failure_rate=0.3, mode="external")
        assert network.latency == (250, 250)
        assert network.failure_rate == 0.3
        assert network.mode == "external"

    def test_invalid_mode(self) -> None:
        with pytest.raises(ValueError, match="mode"):
            NetworkSimulator(mode="carrier-pigeon")  # type: ignore[arg-type]

    def test_source_follows_mode(self, source: MemoryDataSource) -> None:
        network = NetworkSimulator(sources={"mock": source})
        assert network.source is source

        network.configure(mode="external")
        with pytest.raises(LookupError, match="external"):
            network.source

        network.register_source("external", source)
        assert network.source is source
