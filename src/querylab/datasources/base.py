"""Base data source protocol."""

from typing import Protocol, runtime_checkable

from querylab.datasources.models import Post, Todo, User


@runtime_checkable
class DataSource(Protocol):
    """Async data source interface.

    Implementations return a result or raise. Missing entities raise
    NotFoundError; other failures raise FetchError.
    """

    async def get_todos(self) -> list[Todo]:
        """List all todos."""
        ...

    async def get_todo(self, todo_id: int) -> Todo:
        """Get one todo by id."""
        ...

    async def toggle_todo(self, todo_id: int) -> Todo:
        """Flip a todo's completed flag and return the updated todo."""
        ...

    async def add_todo(self, title: str) -> Todo:
        """Create a todo and return it."""
        ...

    async def delete_todo(self, todo_id: int) -> None:
        """Delete a todo."""
        ...

    async def get_posts(self) -> list[Post]:
        """List all posts."""
        ...

    async def get_post(self, post_id: int) -> Post:
        """Get one post by id."""
        ...

    async def get_users(self) -> list[User]:
        """List all users."""
        ...

    async def get_user(self, user_id: int) -> User:
        """Get one user by id."""
        ...

    async def disconnect(self) -> None:
        """Release any underlying resources."""
        ...
