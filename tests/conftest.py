"""Shared pytest fixtures."""

import pytest

from querylab import (
    DataStoreState,
    MemoryDataSource,
    NetworkLog,
    NetworkSimulator,
    QueryCache,
)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> DataStoreState:
    """Create a fresh fixture store for each test."""
    return DataStoreState()


@pytest.fixture
def source(store: DataStoreState) -> MemoryDataSource:
    return MemoryDataSource(store)


@pytest.fixture
def network(clock: FakeClock, source: MemoryDataSource) -> NetworkSimulator:
    """Zero-latency, never-failing simulator."""
    return NetworkSimulator(
        latency=0,
        failure_rate=0.0,
        sources={"mock": source},
        log=NetworkLog(),
        clock=clock,
    )


@pytest.fixture
def cache(network: NetworkSimulator, clock: FakeClock) -> QueryCache:
    return QueryCache(network=network, clock=clock)
