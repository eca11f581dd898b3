"""Polling and focus revalidation for observed queries."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from querylab.cache import QueryCache
from querylab.keys import canonicalize_key
from querylab.types import KeySegment, QueryKey, QueryState

logger = logging.getLogger(__name__)


class Scheduler:
    """Arms one polling timer per observed key with a positive interval.

    A timer runs while its entry has at least one enabled subscriber asking
    for an interval; with several, the shortest interval wins. Each tick
    invalidates the key; the cache joins a fetch already in flight instead of
    starting another.

    Usage:
        scheduler = Scheduler(cache)
        scheduler.start()
        ...
        scheduler.focus()          # window regained focus
        await scheduler.close()
    """

    def __init__(self, cache: QueryCache) -> None:
        self._cache = cache
        self._timers: dict[str, tuple[int, asyncio.Task[None]]] = {}
        self._remove_listener: Callable[[], None] | None = None

    @property
    def armed(self) -> list[str]:
        """Canonical keys with a running timer."""
        return list(self._timers)

    def is_armed(self, key: QueryKey) -> bool:
        return canonicalize_key(key) in self._timers

    def start(self) -> None:
        """Attach to the cache and arm timers for entries already observed."""
        if self._remove_listener is not None:
            return
        self._remove_listener = self._cache.add_listener(self._sync)
        for state in self._cache.get_all():
            self._sync(state)

    def focus(self) -> list[asyncio.Task[QueryState[Any]]]:
        """Revalidate every entry that opted into refetch on focus."""
        logger.debug("Focus event")
        return self._cache.invalidate(lambda state: state.refetch_on_focus)

    async def close(self) -> None:
        """Detach from the cache and cancel all timers."""
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        timers = [task for _, task in self._timers.values()]
        self._timers.clear()
        for task in timers:
            task.cancel()
        for task in timers:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _sync(self, state: QueryState[Any]) -> None:
        canonical = canonicalize_key(state.key)
        interval = state.refetch_interval_ms
        wanted = state.subscriber_count > 0 and interval > 0
        current = self._timers.get(canonical)

        if current is not None and (not wanted or current[0] != interval):
            self._disarm(canonical)
            current = None
        if wanted and current is None:
            self._arm(canonical, state.key, interval)

    def _arm(self, canonical: str, key: tuple[KeySegment, ...], interval: int) -> None:
        task = asyncio.get_running_loop().create_task(self._poll(key, interval))
        self._timers[canonical] = (interval, task)
        logger.debug("Armed %s every %d ms", canonical, interval)

    def _disarm(self, canonical: str) -> None:
        _, task = self._timers.pop(canonical)
        task.cancel()
        logger.debug("Disarmed %s", canonical)

    async def _poll(self, key: tuple[KeySegment, ...], interval: int) -> None:
        while True:
            await asyncio.sleep(interval / 1000)
            self._cache.invalidate(key, exact=True)


__all__ = ["Scheduler"]
