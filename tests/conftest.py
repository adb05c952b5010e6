import json
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from google_tasks_mcp._httpx_utils import create_google_http_client
from google_tasks_mcp.auth import GoogleOAuthClient, GoogleTokenSet


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Manually advanced clock for idle-deadline tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGoogle:
    """In-process stand-in for Google's token endpoint and the Tasks API.

    Task lists and tasks are kept in insertion order. Every request is recorded
    in `requests` and passed to `on_request` when set.
    """

    def __init__(self) -> None:
        self.task_lists: list[dict[str, Any]] = []
        self.tasks: dict[str, list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_payload: dict[str, Any] = {
            "access_token": "access-1",
            "expires_in": 3599,
            "refresh_token": "refresh-1",
            "scope": "https://www.googleapis.com/auth/tasks",
            "token_type": "Bearer",
        }
        self.fail_paths: dict[str, int] = {}
        self.page_size: int | None = None
        self.on_request: Callable[[httpx.Request], None] | None = None

    def add_list(self, list_id: str, title: str, tasks: list[dict[str, Any]] | None = None) -> None:
        self.task_lists.append({"id": list_id, "title": title, "kind": "tasks#taskList"})
        self.tasks[list_id] = list(tasks or [])

    def client_factory(self, **kwargs: Any) -> httpx.AsyncClient:
        return create_google_http_client(transport=httpx.MockTransport(self.handler), **kwargs)

    def _page(self, request: httpx.Request, items: list[dict[str, Any]]) -> dict[str, Any]:
        if self.page_size is None:
            return {"items": items} if items else {}
        start = int(request.url.params.get("pageToken", "0"))
        payload: dict[str, Any] = {"items": items[start : start + self.page_size]}
        if start + self.page_size < len(items):
            payload["nextPageToken"] = str(start + self.page_size)
        return payload

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)
        path = request.url.path

        if path in self.fail_paths:
            return httpx.Response(self.fail_paths[path], json={"error": {"message": "boom"}})

        if request.url.host == "oauth2.googleapis.com" and path == "/token":
            return httpx.Response(self.token_status, json=self.token_payload)

        parts = path.removeprefix("/tasks/v1/").split("/")
        if parts == ["users", "@me", "lists"]:
            return httpx.Response(200, json=self._page(request, self.task_lists))

        if len(parts) >= 3 and parts[0] == "lists" and parts[2] == "tasks":
            list_id = parts[1]
            if list_id not in self.tasks:
                return httpx.Response(404, json={"error": {"message": "Not Found"}})
            tasks = self.tasks[list_id]

            if len(parts) == 4 and request.method == "GET":
                for task in tasks:
                    if task["id"] == parts[3]:
                        return httpx.Response(200, json=task)
                return httpx.Response(404, json={"error": {"message": "Not Found"}})

            if request.method == "GET":
                items = tasks
                if request.url.params.get("showCompleted") == "false":
                    items = [task for task in tasks if task.get("status") != "completed"]
                return httpx.Response(200, json=self._page(request, items))

            if request.method == "POST":
                body = json.loads(request.content)
                task = {"id": f"T{len(tasks) + 1}", "status": "needsAction", **body}
                tasks.append(task)
                return httpx.Response(200, json=task)

        return httpx.Response(404, json={"error": {"message": f"unexpected {request.method} {path}"}})

    def token_form(self, index: int = -1) -> dict[str, list[str]]:
        token_requests = [r for r in self.requests if r.url.path == "/token"]
        return parse_qs(token_requests[index].content.decode())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def oauth_client(fake_google: FakeGoogle) -> GoogleOAuthClient:
    return GoogleOAuthClient(
        "client-id",
        "client-secret",
        "https://gateway.example.com/oauth2/callback",
        http_client_factory=fake_google.client_factory,
    )


@pytest.fixture
def valid_tokens() -> GoogleTokenSet:
    return GoogleTokenSet(access_token="access-0", refresh_token="refresh-0")
