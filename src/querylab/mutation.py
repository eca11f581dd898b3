"""Optimistic mutations with snapshot and rollback."""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from querylab.cache import QueryCache
from querylab.exceptions import as_fetch_error
from querylab.keys import canonicalize_key, normalize_key
from querylab.network import NetworkSimulator
from querylab.types import MutationRecord, QueryKey

logger = logging.getLogger(__name__)

V = TypeVar("V")

RemoteOp = Callable[[V], Awaitable[Any]]
Updater = Callable[[Any], Any]

HISTORY_SIZE = 50


class MutationCoordinator:
    """Runs optimistic writes against a QueryCache.

    Each call moves a MutationRecord through ``idle -> pending ->
    success|error -> settled``. Mutations on the same key run one at a time so
    a rollback always restores a state no other mutation has touched.

    Usage:
        mutations = MutationCoordinator(cache)
        record = await mutations.mutate(
            ["todos"], 1, source.toggle_todo, lambda todos: flip(todos, 1)
        )
    """

    def __init__(
        self,
        cache: QueryCache,
        network: NetworkSimulator | None = None,
        *,
        history_size: int = HISTORY_SIZE,
    ) -> None:
        self._cache = cache
        self._network = network if network is not None else cache.network
        self._locks: dict[str, asyncio.Lock] = {}
        self._queued: dict[str, int] = {}
        self._pending: dict[str, MutationRecord[Any]] = {}
        self.history: deque[MutationRecord[Any]] = deque(maxlen=history_size)

    def is_pending(self, key: QueryKey) -> bool:
        """True while a mutation for ``key`` is running or queued."""
        return canonicalize_key(key) in self._locks

    def current(self, key: QueryKey) -> MutationRecord[Any] | None:
        """The record of the mutation currently running for ``key``."""
        return self._pending.get(canonicalize_key(key))

    async def mutate(
        self,
        key: QueryKey,
        variables: V,
        remote_op: RemoteOp[V],
        optimistic_updater: Updater | None = None,
    ) -> MutationRecord[Any]:
        """Apply ``optimistic_updater`` to ``key``, then call ``remote_op``.

        On failure the cache is restored from the snapshot. Either way the key
        and every key under it (``["todos", 1]`` under ``["todos"]``) are
        invalidated afterwards so a refetch reconciles them with the server.
        Failures are reported on the returned record, never raised.
        """
        canonical = canonicalize_key(key)
        lock = self._locks.setdefault(canonical, asyncio.Lock())
        self._queued[canonical] = self._queued.get(canonical, 0) + 1
        try:
            async with lock:
                record = await self._run(
                    canonical,
                    normalize_key(key),
                    variables,
                    remote_op,
                    optimistic_updater,
                )
        finally:
            self._queued[canonical] -= 1
            if not self._queued[canonical]:
                del self._queued[canonical]
                del self._locks[canonical]
        return record

    async def _run(
        self,
        canonical: str,
        key: tuple[Any, ...],
        variables: Any,
        remote_op: RemoteOp[Any],
        optimistic_updater: Updater | None,
    ) -> MutationRecord[Any]:
        # A late fetch, for the key or one under it, must not overwrite the
        # optimistic value
        self._cache.cancel(key)

        record: MutationRecord[Any] = MutationRecord(
            key=key,
            variables=variables,
            snapshot=copy.deepcopy(self._cache.get_data(key)),
        )
        self._pending[canonical] = record
        self.history.append(record)

        applied = False
        try:
            if optimistic_updater is not None:
                try:
                    self._cache.set_data(key, optimistic_updater)
                except Exception as exc:
                    record.status = "error"
                    record.error = exc
                    logger.warning(
                        "Optimistic update for %s failed: %s", canonical, exc
                    )
                    return record
                applied = True
                logger.info("Optimistically updated %s (%r)", canonical, variables)
            record.status = "pending"

            try:
                record.result = await self._network.run(
                    canonical, lambda: remote_op(variables)
                )
            except Exception as exc:
                record.status = "error"
                record.error = as_fetch_error(exc, canonical)
                if applied:
                    self._cache.set_data(key, copy.deepcopy(record.snapshot))
                    logger.info("Rolled back %s after error: %s", canonical, exc)
                else:
                    logger.info("Mutation on %s failed: %s", canonical, exc)
            else:
                record.status = "success"
                logger.info(
                    "Server confirmed mutation on %s (%r)", canonical, variables
                )
        except asyncio.CancelledError:
            if applied and record.status == "pending":
                self._cache.set_data(key, copy.deepcopy(record.snapshot))
                logger.info("Rolled back %s after cancellation", canonical)
            raise
        finally:
            record.settled = True
            self._pending.pop(canonical, None)
            self._cache.invalidate(key)
        return record


__all__ = ["MutationCoordinator"]
