"""Data sources for the querylab playground."""

from querylab.datasources.base import DataSource
from querylab.datasources.http import DEFAULT_BASE_URL, HttpDataSource
from querylab.datasources.memory import DataStoreState, MemoryDataSource
from querylab.datasources.models import Post, Todo, User

__all__ = [
    "DEFAULT_BASE_URL",
    "DataSource",
    "DataStoreState",
    "HttpDataSource",
    "MemoryDataSource",
    "Post",
    "Todo",
    "User",
]
