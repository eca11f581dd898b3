"""Simulated unreliable network.

Provides:
- NetworkLog: fixed-capacity ring buffer of NetworkLogEntry with listeners
- NetworkSimulator: wraps async operations with latency and failure injection
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterator, Mapping
from typing import TYPE_CHECKING, TypeVar

from querylab.duration import parse_duration
from querylab.exceptions import SimulatedNetworkError
from querylab.keys import canonicalize_key
from querylab.types import (
    DataSourceMode,
    Duration,
    NetworkLogEntry,
    NetworkPhase,
    QueryKey,
)

if TYPE_CHECKING:
    from querylab.datasources.base import DataSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOG_CAPACITY = 50
_MODES: tuple[DataSourceMode, ...] = ("mock", "external")

Latency = Duration | tuple[Duration, Duration]
LogListener = Callable[[NetworkLogEntry], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


class NetworkLog:
    """Bounded, append-only log of network phases.

    Once ``capacity`` entries are held, each append drops the oldest one.
    Retained entries stay in chronological order.
    """

    def __init__(self, capacity: int = LOG_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._entries: deque[NetworkLogEntry] = deque(maxlen=capacity)
        self._listeners: list[LogListener] = []

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: NetworkLogEntry) -> None:
        """Record an entry and notify listeners."""
        self._entries.append(entry)
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Network log listener failed for %s", entry.key)

    def entries(self) -> list[NetworkLogEntry]:
        """Return a copy of the retained window, oldest first."""
        return list(self._entries)

    def for_key(self, key: QueryKey | str) -> list[NetworkLogEntry]:
        """Return retained entries for one key."""
        canonical = key if isinstance(key, str) else canonicalize_key(key)
        return [entry for entry in self._entries if entry.key == canonical]

    def clear(self) -> None:
        self._entries.clear()

    def subscribe(self, listener: LogListener) -> Callable[[], None]:
        """Register a listener for new entries. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[NetworkLogEntry]:
        return iter(list(self._entries))


class NetworkSimulator:
    """Wraps async operations with simulated latency and failures.

    Usage:
        network = NetworkSimulator(latency="500ms", failure_rate=0.2)
        todos = await network.run(["todos"], source.get_todos)
        network.configure(failure_rate=1.0)
    """

    def __init__(
        self,
        *,
        latency: Latency = 0,
        failure_rate: float = 0.0,
        mode: DataSourceMode = "mock",
        sources: Mapping[DataSourceMode, DataSource] | None = None,
        log: NetworkLog | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._latency = self._parse_latency(latency)
        self._failure_rate = self._check_failure_rate(failure_rate)
        self._mode = self._check_mode(mode)
        self._sources: dict[DataSourceMode, DataSource] = dict(sources or {})
        self.log = log if log is not None else NetworkLog()
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock or _now_ms

    @staticmethod
    def _parse_latency(latency: Latency) -> tuple[int, int]:
        if isinstance(latency, tuple):
            low, high = (parse_duration(bound) for bound in latency)
            if low > high:
                raise ValueError("latency range must be (low, high) with low <= high")
            return low, high
        fixed = parse_duration(latency)
        return fixed, fixed

    @staticmethod
    def _check_failure_rate(failure_rate: float) -> float:
        if not 0 <= failure_rate <= 1:
            raise ValueError("failure_rate must be between 0 and 1")
        return float(failure_rate)

    @staticmethod
    def _check_mode(mode: str) -> DataSourceMode:
        if mode not in _MODES:
            raise ValueError(f"mode must be one of {_MODES}, got {mode!r}")
        return mode  # type: ignore[return-value]

    @property
    def latency(self) -> tuple[int, int]:
        """Latency bounds in ms; equal bounds mean a fixed delay."""
        return self._latency

    @property
    def failure_rate(self) -> float:
        return self._failure_rate

    @property
    def mode(self) -> DataSourceMode:
        return self._mode

    @property
    def source(self) -> DataSource:
        """The data source registered for the current mode."""
        try:
            return self._sources[self._mode]
        except KeyError:
            raise LookupError(
                f"No data source registered for mode {self._mode!r}"
            ) from None

    @property
    def sources(self) -> dict[DataSourceMode, DataSource]:
        """Registered data sources by mode."""
        return dict(self._sources)

    def register_source(self, mode: DataSourceMode, source: DataSource) -> None:
        self._sources[self._check_mode(mode)] = source

    def configure(
        self,
        *,
        latency: Latency | None = None,
        failure_rate: float | None = None,
        mode: DataSourceMode | None = None,
    ) -> None:
        """Change simulation settings; calls already in flight are unaffected."""
        if latency is not None:
            self._latency = self._parse_latency(latency)
        if failure_rate is not None:
            self._failure_rate = self._check_failure_rate(failure_rate)
        if mode is not None:
            self._mode = self._check_mode(mode)
        logger.debug(
            "Network configured: latency=%s failure_rate=%s mode=%s",
            self._latency,
            self._failure_rate,
            self._mode,
        )

    def _draw_latency(self) -> int:
        low, high = self._latency
        if low == high:
            return low
        return self._rng.randint(low, high)

    def _should_fail(self) -> bool:
        if self._failure_rate <= 0:
            return False
        if self._failure_rate >= 1:
            return True
        return self._rng.random() < self._failure_rate

    def _record(
        self, key: str, phase: NetworkPhase, duration_ms: int | None = None
    ) -> None:
        entry = NetworkLogEntry(
            timestamp=self._clock(),
            key=key,
            phase=phase,
            duration_ms=duration_ms,
        )
        self.log.append(entry)
        logger.debug("network %s %s (%s ms)", key, phase, duration_ms)

    async def run(self, key: QueryKey | str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` through the simulated network.

        The delay is applied first, then the failure draw. A simulated failure
        raises SimulatedNetworkError without invoking ``fn``.
        """
        canonical = key if isinstance(key, str) else canonicalize_key(key)
        delay = self._draw_latency()
        fail = self._should_fail()
        started = time.monotonic()
        self._record(canonical, "pending")

        def elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            if delay:
                await asyncio.sleep(delay / 1000)
            else:
                # Always yield once so overlapping callers observe the pending call
                await asyncio.sleep(0)
            if fail:
                raise SimulatedNetworkError(canonical)
            result = await fn()
        except BaseException:
            self._record(canonical, "error", elapsed())
            raise
        self._record(canonical, "success", elapsed())
        return result


__all__ = ["LOG_CAPACITY", "Latency", "NetworkLog", "NetworkSimulator"]
