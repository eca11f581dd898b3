"""Core types for querylab."""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")

# A key segment is a str or an int; bools are rejected at canonicalisation
KeySegment = str | int
QueryKey = Sequence[KeySegment]

QueryStatus = Literal["idle", "pending", "success", "error"]
FetchStatus = Literal["idle", "fetching"]
MutationStatus = Literal["idle", "pending", "success", "error"]
NetworkPhase = Literal["pending", "success", "error"]
DataSourceMode = Literal["mock", "external"]

Never = Literal["never"]
NEVER: Never = "never"

# Duration type alias
Duration = str | int  # "30s", "5m", "2h", "1d" or milliseconds
StaleTime = int | Never  # milliseconds, or pinned fresh once populated

Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class QueryState(Generic[T]):
    """Read-only snapshot of a cache entry, handed to subscribers."""

    key: tuple[KeySegment, ...]
    status: QueryStatus
    data: T | None
    error: BaseException | None
    fetch_status: FetchStatus
    data_updated_at: int | None  # Unix timestamp ms of last confirmed fetch
    stale_time: StaleTime
    generation: int
    subscriber_count: int
    is_stale: bool
    refetch_on_focus: bool = False
    refetch_interval_ms: int = 0  # smallest positive among enabled subscribers
    enabled: bool = True  # false when every subscriber opted out of auto-fetch

    @property
    def is_fetching(self) -> bool:
        return self.fetch_status == "fetching"


@dataclass(slots=True)
class MutationRecord(Generic[T]):
    """One invocation of an optimistic mutation.

    ``snapshot`` is taken once, before the optimistic write, and is never
    reassigned afterwards.
    """

    key: tuple[KeySegment, ...]
    variables: Any
    snapshot: T | None
    status: MutationStatus = "idle"
    settled: bool = False
    result: Any = None
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class NetworkLogEntry:
    """A single phase of a simulated network call."""

    timestamp: int  # Unix timestamp ms
    key: str
    phase: NetworkPhase
    duration_ms: int | None = None


@dataclass(frozen=True, slots=True)
class QueryOptions:
    """Per-query options recorded on the entry by ensure/prefetch.

    The latest call wins. Polling interval and ``enabled`` are kept per
    subscription instead.
    """

    stale_time: StaleTime = 0
    refetch_on_focus: bool = False
    retry: int = 0
