"""MCP tools exposing Google Tasks: search, fetch and create_task."""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import mcp.types as types
from mcp.server.lowlevel import Server
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from google_tasks_mcp.auth import AuthorizationStore
from google_tasks_mcp.exceptions import AuthorizationError
from google_tasks_mcp.settings import SERVER_NAME, SERVER_VERSION
from google_tasks_mcp.tasks_api import GoogleTasksClient, TaskList

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 25


class SearchArguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str | None = Field(default=None, description="Text search in task title")
    list_id: str | None = Field(default=None, alias="listId", description="Task list ID")
    show_completed: bool = Field(default=True, alias="showCompleted", description="Include completed tasks")


class FetchArguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    list_id: str = Field(alias="listId", description="Task list ID")
    task_id: str = Field(alias="taskId", description="Task ID")


class CreateTaskArguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    list_id: str | None = Field(
        default=None, alias="listId", description="Task list ID; the first list is used when omitted"
    )
    title: str = Field(description="Task title")
    notes: str | None = Field(default=None, description="Task notes")
    due: str | None = Field(default=None, description="ISO8601, e.g. 2025-08-01T10:00:00.000Z")


ToolHandler = Callable[[dict[str, str], Any], Awaitable[types.CallToolResult]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    title: str
    description: str
    arguments: type[BaseModel]
    handler: ToolHandler

    def to_tool(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            title=self.title,
            description=self.description,
            inputSchema=self.arguments.model_json_schema(by_alias=True),
        )


def text_result(payload: Any) -> types.CallToolResult:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)])


def error_result(message: str) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=message)], isError=True)


class TasksToolset:
    """The tools offered to MCP clients, backed by the Google Tasks client.

    Tool calls never raise. Authorization problems, invalid arguments and
    Google API failures come back as error-flagged results so a failing call
    does not end the client's session.
    """

    def __init__(self, auth_store: AuthorizationStore, tasks_client: GoogleTasksClient):
        self.auth_store = auth_store
        self.tasks_client = tasks_client
        self.specs: dict[str, ToolSpec] = {
            spec.name: spec
            for spec in (
                ToolSpec(
                    name="search",
                    title="Search tasks",
                    description="Search tasks by name/status/due date from all lists or a specific list.",
                    arguments=SearchArguments,
                    handler=self._search,
                ),
                ToolSpec(
                    name="fetch",
                    title="Fetch a task",
                    description="Fetch detailed information for a single task.",
                    arguments=FetchArguments,
                    handler=self._fetch,
                ),
                ToolSpec(
                    name="create_task",
                    title="Create a task",
                    description="Create a new task in the specified list (or the first list if listId is missing).",
                    arguments=CreateTaskArguments,
                    handler=self._create_task,
                ),
            )
        }

    def list_tools(self) -> list[types.Tool]:
        return [spec.to_tool() for spec in self.specs.values()]

    async def call(self, name: str, arguments: dict[str, Any] | None) -> types.CallToolResult:
        spec = self.specs.get(name)
        if spec is None:
            return error_result(f"Unknown tool: {name}")

        try:
            params = spec.arguments.model_validate(arguments or {})
        except ValidationError as exc:
            return error_result(f"Invalid arguments for {name}: {exc}")

        try:
            headers = await self.auth_store.get_auth_header()
        except AuthorizationError as exc:
            return error_result(exc.message)

        try:
            return await spec.handler(headers, params)
        except httpx.HTTPError:
            logger.exception("Google Tasks API call failed in tool %s", name)
            return error_result("Google Tasks API request failed")

    async def _search(self, headers: dict[str, str], params: SearchArguments) -> types.CallToolResult:
        if params.list_id:
            lists = [TaskList(id=params.list_id)]
        else:
            lists = await self.tasks_client.list_task_lists(headers)

        needle = params.query.lower() if params.query else None
        hits: list[dict[str, Any]] = []
        for task_list in lists:
            tasks = await self.tasks_client.list_tasks(headers, task_list.id, params.show_completed)
            for task in tasks:
                if needle is None or needle in (task.title or "").lower():
                    hits.append({"listId": task_list.id, "task": task.model_dump(mode="json", exclude_none=True)})
            if len(hits) >= MAX_SEARCH_RESULTS:
                break
        return text_result(hits[:MAX_SEARCH_RESULTS])

    async def _fetch(self, headers: dict[str, str], params: FetchArguments) -> types.CallToolResult:
        task = await self.tasks_client.fetch_task(headers, params.list_id, params.task_id)
        return text_result(task.model_dump(mode="json", exclude_none=True))

    async def _create_task(self, headers: dict[str, str], params: CreateTaskArguments) -> types.CallToolResult:
        list_id = params.list_id
        if not list_id:
            lists = await self.tasks_client.list_task_lists(headers)
            if not lists:
                return error_result("No task lists found.")
            list_id = lists[0].id

        task = await self.tasks_client.create_task(headers, list_id, params.title, notes=params.notes, due=params.due)
        return text_result(task.model_dump(mode="json", exclude_none=True))


def create_server(toolset: TasksToolset) -> Server[Any, Any]:
    """Build the MCP protocol server that every session runs."""
    server: Server[Any, Any] = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return toolset.list_tools()

    # Arguments are validated by the toolset's pydantic models.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        return await toolset.call(name, arguments)

    return server
