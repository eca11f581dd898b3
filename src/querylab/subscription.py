"""Subscription - awaitable handle returned by QueryCache.ensure()."""

from __future__ import annotations

from collections.abc import Callable, Generator
from types import TracebackType
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from querylab.types import KeySegment, QueryState

if TYPE_CHECKING:
    from querylab.cache import QueryCache

T = TypeVar("T")

StateCallback = Callable[[QueryState[Any]], None]


class Subscription(Generic[T]):
    """A registered interest in one query key.

    Usage:
        sub = cache.ensure(["todos"], fetch_todos, on_change=render)
        state = await sub        # QueryState[T] once no fetch is in flight
        sub.state                # current snapshot, without waiting
        sub.unsubscribe()
    """

    __slots__ = (
        "_active",
        "_cache",
        "_callback",
        "_enabled",
        "_key",
        "_refetch_interval_ms",
    )

    def __init__(
        self,
        cache: QueryCache,
        key: tuple[KeySegment, ...],
        callback: StateCallback | None = None,
        *,
        enabled: bool = True,
        refetch_interval_ms: int = 0,
    ) -> None:
        self._cache = cache
        self._key = key
        self._callback = callback
        self._enabled = enabled
        self._refetch_interval_ms = refetch_interval_ms
        self._active = True

    @property
    def key(self) -> tuple[KeySegment, ...]:
        return self._key

    @property
    def active(self) -> bool:
        return self._active

    @property
    def enabled(self) -> bool:
        """False if this subscription only observes and never triggers fetches."""
        return self._enabled

    @property
    def refetch_interval_ms(self) -> int:
        return self._refetch_interval_ms

    @property
    def state(self) -> QueryState[T]:
        """Current snapshot of the entry."""
        state = self._cache.get_state(self._key)
        assert state is not None  # entries are never evicted
        return state

    def unsubscribe(self) -> None:
        """Stop receiving updates. Safe to call more than once."""
        if self._active:
            self._active = False
            self._cache._unsubscribe(self)

    def deliver(self, state: QueryState[Any]) -> None:
        if self._active and self._callback is not None:
            self._callback(state)

    def __await__(self) -> Generator[Any, None, QueryState[T]]:
        return self._cache.wait(self._key).__await__()

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        status = "active" if self._active else "closed"
        return f"Subscription({'/'.join(map(str, self._key))}, {status})"


__all__ = ["StateCallback", "Subscription"]
