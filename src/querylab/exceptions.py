"""Exception hierarchy for querylab.

All exceptions inherit from :class:`QueryLabError`. Fetch and mutation
failures are captured by the engine and stored on cache entries and mutation
records; callers inspect ``state.error`` / ``record.error`` rather than
catching them.

Subclass hierarchy::

    QueryLabError
    +-- FetchError
    |   +-- NotFoundError
    |   +-- SimulatedNetworkError
    +-- StaleGenerationDiscard
"""

from __future__ import annotations


class QueryLabError(Exception):
    """Base exception for all querylab errors."""


class FetchError(QueryLabError):
    """A read or remote operation failed.

    Args:
        message: Human-readable error description.
        key: Canonical key of the operation, when known.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class NotFoundError(FetchError):
    """The requested entity does not exist in the data source."""


class SimulatedNetworkError(FetchError):
    """Failure injected by the network simulator."""

    def __init__(self, key: str | None = None) -> None:
        super().__init__("Simulated network error", key)


class StaleGenerationDiscard(QueryLabError):
    """A completed operation was superseded by a newer generation.

    Raised and caught inside the cache only; it is never surfaced to
    subscribers.
    """

    def __init__(self, key: str, captured: int, current: int) -> None:
        super().__init__(
            f"Discarding result for {key!r}: generation {captured} != {current}"
        )
        self.key = key
        self.captured = captured
        self.current = current


def as_fetch_error(exc: BaseException, key: str | None = None) -> FetchError:
    """Wrap an arbitrary exception as a FetchError, keeping the cause."""
    if isinstance(exc, FetchError):
        if exc.key is None:
            exc.key = key
        return exc
    error = FetchError(str(exc) or type(exc).__name__, key)
    error.__cause__ = exc
    return error


__all__ = [
    "FetchError",
    "NotFoundError",
    "QueryLabError",
    "SimulatedNetworkError",
    "StaleGenerationDiscard",
    "as_fetch_error",
]
