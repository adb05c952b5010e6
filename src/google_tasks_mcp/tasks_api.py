"""Thin async client for the Google Tasks REST API."""

import logging
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict

from google_tasks_mcp._httpx_utils import GoogleHttpClientFactory, create_google_http_client

logger = logging.getLogger(__name__)

TASKS_API_BASE_URL = "https://tasks.googleapis.com/tasks/v1"
PAGE_SIZE = 100


class TaskList(BaseModel):
    """See https://developers.google.com/tasks/reference/rest/v1/tasklists"""

    model_config = ConfigDict(extra="allow")

    id: str
    title: str | None = None
    updated: str | None = None
    etag: str | None = None
    kind: str | None = None
    selfLink: str | None = None


class Task(BaseModel):
    """See https://developers.google.com/tasks/reference/rest/v1/tasks"""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    title: str | None = None
    notes: str | None = None
    status: str | None = None
    due: str | None = None
    completed: str | None = None
    updated: str | None = None
    parent: str | None = None
    position: str | None = None
    etag: str | None = None
    kind: str | None = None
    selfLink: str | None = None


class GoogleTasksClient:
    """Google Tasks API calls.

    Every operation takes the authorization headers produced by the
    AuthorizationStore. Non-2xx responses raise httpx.HTTPStatusError; nothing
    is retried.
    """

    def __init__(
        self,
        base_url: str = TASKS_API_BASE_URL,
        http_client_factory: GoogleHttpClientFactory = create_google_http_client,
    ):
        self.base_url = base_url.rstrip("/")
        self._http_client_factory = http_client_factory

    async def list_task_lists(self, headers: dict[str, str]) -> list[TaskList]:
        items = await self._get_all_pages(headers, "/users/@me/lists", {})
        return [TaskList.model_validate(item) for item in items]

    async def list_tasks(self, headers: dict[str, str], list_id: str, show_completed: bool = True) -> list[Task]:
        params = {"showCompleted": "true" if show_completed else "false"}
        items = await self._get_all_pages(headers, f"/lists/{_segment(list_id)}/tasks", params)
        return [Task.model_validate(item) for item in items]

    async def fetch_task(self, headers: dict[str, str], list_id: str, task_id: str) -> Task:
        async with self._http_client_factory(headers=headers) as client:
            response = await client.get(f"{self.base_url}/lists/{_segment(list_id)}/tasks/{_segment(task_id)}")
            response.raise_for_status()
        return Task.model_validate(response.json())

    async def create_task(
        self,
        headers: dict[str, str],
        list_id: str,
        title: str,
        notes: str | None = None,
        due: str | None = None,
    ) -> Task:
        body: dict[str, Any] = {"title": title}
        if notes is not None:
            body["notes"] = notes
        if due is not None:
            body["due"] = due

        async with self._http_client_factory(headers=headers) as client:
            response = await client.post(f"{self.base_url}/lists/{_segment(list_id)}/tasks", json=body)
            response.raise_for_status()
        task = Task.model_validate(response.json())
        logger.info("Created task %s in list %s", task.id, list_id)
        return task

    async def _get_all_pages(
        self, headers: dict[str, str], path: str, params: dict[str, str]
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_token: str | None = None
        async with self._http_client_factory(headers=headers) as client:
            while True:
                query = {**params, "maxResults": str(PAGE_SIZE)}
                if page_token:
                    query["pageToken"] = page_token
                response = await client.get(f"{self.base_url}{path}", params=query)
                response.raise_for_status()
                payload = response.json()
                items.extend(payload.get("items") or [])
                page_token = payload.get("nextPageToken")
                if not page_token:
                    return items


def _segment(value: str) -> str:
    return quote(value, safe="")
