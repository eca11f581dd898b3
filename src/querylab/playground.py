"""Playground - the todo/post/user demo wired onto the query engine.

Provides:
- Playground: queries and optimistic todo mutations over one cache
- create_playground(): factory building every collaborator from a config
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import replace
from types import TracebackType
from typing import Any

import httpx

from querylab.cache import QueryCache
from querylab.config import PlaygroundConfig
from querylab.datasources.http import HttpDataSource
from querylab.datasources.memory import DataStoreState, MemoryDataSource
from querylab.datasources.models import Todo
from querylab.mutation import MutationCoordinator
from querylab.network import Latency, NetworkLog, NetworkSimulator
from querylab.scheduler import Scheduler
from querylab.subscription import Subscription
from querylab.types import DataSourceMode, MutationRecord, QueryState

logger = logging.getLogger(__name__)

TODOS_KEY = ("todos",)
POSTS_KEY = ("posts",)
USERS_KEY = ("users",)

# Placeholder id for a todo created optimistically, before the server assigns one
PENDING_TODO_ID = -1


def toggle_completed(todos: list[Todo] | None, todo_id: int) -> list[Todo] | None:
    """Return ``todos`` with one todo's completed flag flipped."""
    if todos is None:
        return None
    return [
        replace(todo, completed=not todo.completed) if todo.id == todo_id else todo
        for todo in todos
    ]


def append_todo(todos: list[Todo] | None, title: str) -> list[Todo]:
    return [*(todos or []), Todo(PENDING_TODO_ID, title)]


def remove_todo(todos: list[Todo] | None, todo_id: int) -> list[Todo] | None:
    if todos is None:
        return None
    return [todo for todo in todos if todo.id != todo_id]


class Playground:
    """Queries and optimistic mutations for the demo dataset.

    Usage:
        async with create_playground(latency="300ms") as playground:
            todos = playground.todos(on_change=render)
            await todos
            record = await playground.toggle_todo(1)
    """

    def __init__(
        self,
        *,
        config: PlaygroundConfig,
        state: DataStoreState,
        network: NetworkSimulator,
        cache: QueryCache,
        scheduler: Scheduler,
        mutations: MutationCoordinator,
    ) -> None:
        self.config = config
        self.state = state
        self.network = network
        self.cache = cache
        self.scheduler = scheduler
        self.mutations = mutations

    @property
    def log(self) -> NetworkLog:
        return self.network.log

    # Queries

    def todos(self, **options: Any) -> Subscription[list[Todo]]:
        return self.cache.ensure(
            TODOS_KEY, lambda: self.network.source.get_todos(), **options
        )

    def todo(self, todo_id: int, **options: Any) -> Subscription[Todo]:
        return self.cache.ensure(
            ("todos", todo_id),
            lambda: self.network.source.get_todo(todo_id),
            **options,
        )

    def posts(self, **options: Any) -> Subscription[Any]:
        return self.cache.ensure(
            POSTS_KEY, lambda: self.network.source.get_posts(), **options
        )

    def users(self, **options: Any) -> Subscription[Any]:
        return self.cache.ensure(
            USERS_KEY, lambda: self.network.source.get_users(), **options
        )

    async def refetch(self, key: tuple[Any, ...]) -> QueryState[Any]:
        """Manual refetch, regardless of staleness."""
        return await self.cache.refetch(key)

    # Mutations

    async def toggle_todo(self, todo_id: int) -> MutationRecord[Any]:
        return await self.mutations.mutate(
            TODOS_KEY,
            todo_id,
            lambda variables: self.network.source.toggle_todo(variables),
            lambda todos: toggle_completed(todos, todo_id),
        )

    async def add_todo(self, title: str) -> MutationRecord[Any]:
        return await self.mutations.mutate(
            TODOS_KEY,
            title,
            lambda variables: self.network.source.add_todo(variables),
            lambda todos: append_todo(todos, title),
        )

    async def delete_todo(self, todo_id: int) -> MutationRecord[Any]:
        return await self.mutations.mutate(
            TODOS_KEY,
            todo_id,
            lambda variables: self.network.source.delete_todo(variables),
            lambda todos: remove_todo(todos, todo_id),
        )

    # Controls

    def configure(
        self,
        *,
        latency: Latency | None = None,
        failure_rate: float | None = None,
    ) -> None:
        self.network.configure(latency=latency, failure_rate=failure_rate)

    def set_mode(self, mode: DataSourceMode) -> None:
        """Switch data source; cached data from the old one is revalidated."""
        if mode == self.network.mode:
            return
        self.network.configure(mode=mode)
        logger.info("Switched data source to %s", mode)
        self.cache.invalidate()

    def focus(self) -> None:
        self.scheduler.focus()

    async def close(self) -> None:
        await self.scheduler.close()
        for source in self.network.sources.values():
            await source.disconnect()

    async def __aenter__(self) -> Playground:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


def create_playground(
    config: PlaygroundConfig | None = None,
    *,
    state: DataStoreState | None = None,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], int] | None = None,
    **overrides: Any,
) -> Playground:
    """Create a playground.

    Args:
        config: Base settings (default: ``PlaygroundConfig.from_env()``)
        state: Fixture store for mock mode (default: a fresh DataStoreState)
        http_client: httpx client for external mode (default: created here)
        clock: Millisecond clock shared by cache and network log
        **overrides: Any PlaygroundConfig field, e.g. ``failure_rate=1.0``

    Returns:
        Playground with its scheduler started
    """
    config = (config or PlaygroundConfig.from_env()).with_overrides(**overrides)
    state = state if state is not None else DataStoreState()

    network = NetworkSimulator(
        latency=config.latency,
        failure_rate=config.failure_rate,
        mode=config.mode,
        sources={
            "mock": MemoryDataSource(state),
            "external": HttpDataSource(base_url=config.base_url, client=http_client),
        },
        rng=random.Random(config.seed),
        clock=clock,
    )
    cache = QueryCache(
        network=network,
        default_stale_time=config.default_stale_time,
        clock=clock,
    )
    scheduler = Scheduler(cache)
    scheduler.start()

    return Playground(
        config=config,
        state=state,
        network=network,
        cache=cache,
        scheduler=scheduler,
        mutations=MutationCoordinator(cache, network),
    )


__all__ = [
    "POSTS_KEY",
    "TODOS_KEY",
    "USERS_KEY",
    "Playground",
    "append_todo",
    "create_playground",
    "remove_todo",
    "toggle_completed",
]
