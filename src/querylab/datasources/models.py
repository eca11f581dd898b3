"""Records served by the playground data sources."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Todo:
    id: int
    title: str
    completed: bool = False

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> "Todo":
        return cls(id=obj["id"], title=obj["title"], completed=obj["completed"])


@dataclass(frozen=True, slots=True)
class Post:
    id: int
    title: str
    body: str
    user_id: int

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> "Post":
        return cls(
            id=obj["id"], title=obj["title"], body=obj["body"], user_id=obj["userId"]
        )


@dataclass(frozen=True, slots=True)
class User:
    id: int
    name: str
    email: str
    username: str

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> "User":
        return cls(
            id=obj["id"],
            name=obj["name"],
            email=obj["email"],
            username=obj["username"],
        )
