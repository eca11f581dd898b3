"""In-memory data source backed by an explicit fixture store."""

from dataclasses import replace

from querylab.datasources.models import Post, Todo, User
from querylab.exceptions import NotFoundError


def _default_todos() -> list[Todo]:
    return [
        Todo(1, "Learn React Query"),
        Todo(2, "Build visual demo"),
        Todo(3, "Master optimistic updates"),
        Todo(4, "Understand caching strategies"),
    ]


def _default_posts() -> list[Post]:
    return [
        Post(
            1,
            "Getting Started with React Query",
            "React Query is a powerful data fetching library...",
            1,
        ),
        Post(2, "Understanding Caching", "Caching is crucial for performance...", 1),
        Post(3, "SWR vs React Query", "Both libraries offer similar features...", 2),
    ]


def _default_users() -> list[User]:
    return [
        User(1, "John Doe", "john@example.com", "johndoe"),
        User(2, "Jane Smith", "jane@example.com", "janesmith"),
    ]


class DataStoreState:
    """Mutable fixture dataset. Pass it by handle; call reset() between tests."""

    def __init__(self) -> None:
        self.todos: list[Todo] = []
        self.posts: list[Post] = []
        self.users: list[User] = []
        self.reset()

    def reset(self) -> None:
        """Restore the default fixtures."""
        self.todos = _default_todos()
        self.posts = _default_posts()
        self.users = _default_users()


class MemoryDataSource:
    """Data source serving a DataStoreState.

    Records are frozen, so list copies are enough to keep callers from
    mutating the store.
    """

    def __init__(self, state: DataStoreState | None = None) -> None:
        self.state = state if state is not None else DataStoreState()

    def _find_todo(self, todo_id: int) -> int:
        for index, todo in enumerate(self.state.todos):
            if todo.id == todo_id:
                return index
        raise NotFoundError("Todo not found", key=f"todos:#{todo_id}")

    async def get_todos(self) -> list[Todo]:
        return list(self.state.todos)

    async def get_todo(self, todo_id: int) -> Todo:
        return self.state.todos[self._find_todo(todo_id)]

    async def toggle_todo(self, todo_id: int) -> Todo:
        index = self._find_todo(todo_id)
        todo = self.state.todos[index]
        updated = replace(todo, completed=not todo.completed)
        self.state.todos[index] = updated
        return updated

    async def add_todo(self, title: str) -> Todo:
        next_id = max((t.id for t in self.state.todos), default=0) + 1
        todo = Todo(next_id, title)
        self.state.todos.append(todo)
        return todo

    async def delete_todo(self, todo_id: int) -> None:
        self.state.todos = [t for t in self.state.todos if t.id != todo_id]

    async def get_posts(self) -> list[Post]:
        return list(self.state.posts)

    async def get_post(self, post_id: int) -> Post:
        for post in self.state.posts:
            if post.id == post_id:
                return post
        raise NotFoundError("Post not found", key=f"posts:#{post_id}")

    async def get_users(self) -> list[User]:
        return list(self.state.users)

    async def get_user(self, user_id: int) -> User:
        for user in self.state.users:
            if user.id == user_id:
                return user
        raise NotFoundError("User not found", key=f"users:#{user_id}")

    async def disconnect(self) -> None:
        """Disconnect from the data source (no-op for memory)."""
        pass
