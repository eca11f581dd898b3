"""querylab - Query cache and optimistic-mutation engine for asyncio."""

import logging

from querylab.cache import QueryCache
from querylab.config import PlaygroundConfig

# Data sources
from querylab.datasources import (
    DataSource,
    DataStoreState,
    HttpDataSource,
    MemoryDataSource,
    Post,
    Todo,
    User,
)

# Duration parsing
from querylab.duration import parse_duration, parse_stale_time
from querylab.exceptions import (
    FetchError,
    NotFoundError,
    QueryLabError,
    SimulatedNetworkError,
    StaleGenerationDiscard,
)
from querylab.keys import canonicalize_key, parse_key
from querylab.mutation import MutationCoordinator
from querylab.network import NetworkLog, NetworkSimulator
from querylab.playground import Playground, create_playground
from querylab.scheduler import Scheduler
from querylab.subscription import Subscription

# Core types
from querylab.types import (
    NEVER,
    Duration,
    MutationRecord,
    NetworkLogEntry,
    QueryKey,
    QueryState,
    StaleTime,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "NEVER",
    "DataSource",
    "DataStoreState",
    "Duration",
    "FetchError",
    "HttpDataSource",
    "MemoryDataSource",
    "MutationCoordinator",
    "MutationRecord",
    "NetworkLog",
    "NetworkLogEntry",
    "NetworkSimulator",
    "NotFoundError",
    "Playground",
    "PlaygroundConfig",
    "Post",
    "QueryCache",
    "QueryKey",
    "QueryLabError",
    "QueryState",
    "Scheduler",
    "SimulatedNetworkError",
    "StaleGenerationDiscard",
    "StaleTime",
    "Subscription",
    "Todo",
    "User",
    "canonicalize_key",
    "create_playground",
    "parse_duration",
    "parse_key",
    "parse_stale_time",
]
