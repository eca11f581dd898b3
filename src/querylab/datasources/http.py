"""HTTP data source for a JSONPlaceholder-compatible REST API."""

from __future__ import annotations

import logging
from typing import Any, cast

import httpx

from querylab.datasources.models import Post, Todo, User
from querylab.exceptions import FetchError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://jsonplaceholder.typicode.com"


class HttpDataSource:
    """Async data source backed by a remote REST endpoint."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    async def _request(
        self, method: str, endpoint: str, body: dict[str, Any] | None = None
    ) -> Any:
        """Make a request and return the decoded JSON body."""
        logger.debug("HTTP %s %s", method, endpoint)
        try:
            response = await self._client.request(method, endpoint, json=body)
        except httpx.HTTPError as exc:
            raise FetchError(f"{method} {endpoint} failed: {exc}") from exc
        logger.debug("HTTP %s %s", response.status_code, endpoint)

        if response.status_code == 404:
            raise NotFoundError(f"{endpoint} not found")
        if not response.is_success:
            try:
                error = response.json().get("error", "Request failed")
            except Exception:
                error = f"HTTP {response.status_code}"
            raise FetchError(f"{method} {endpoint}: {error}")
        if not response.content:
            return None
        return response.json()

    async def get_todos(self) -> list[Todo]:
        data = await self._request("GET", "/todos")
        return [Todo.from_json(obj) for obj in cast(list[dict[str, Any]], data)]

    async def get_todo(self, todo_id: int) -> Todo:
        return Todo.from_json(await self._request("GET", f"/todos/{todo_id}"))

    async def toggle_todo(self, todo_id: int) -> Todo:
        current = await self.get_todo(todo_id)
        data = await self._request(
            "PATCH", f"/todos/{todo_id}", {"completed": not current.completed}
        )
        return Todo.from_json(data)

    async def add_todo(self, title: str) -> Todo:
        data = await self._request(
            "POST", "/todos", {"title": title, "completed": False}
        )
        return Todo.from_json(data)

    async def delete_todo(self, todo_id: int) -> None:
        await self._request("DELETE", f"/todos/{todo_id}")

    async def get_posts(self) -> list[Post]:
        data = await self._request("GET", "/posts")
        return [Post.from_json(obj) for obj in cast(list[dict[str, Any]], data)]

    async def get_post(self, post_id: int) -> Post:
        return Post.from_json(await self._request("GET", f"/posts/{post_id}"))

    async def get_users(self) -> list[User]:
        data = await self._request("GET", "/users")
        return [User.from_json(obj) for obj in cast(list[dict[str, Any]], data)]

    async def get_user(self, user_id: int) -> User:
        return User.from_json(await self._request("GET", f"/users/{user_id}"))

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
