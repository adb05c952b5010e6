"""Plain HTTP routes: OAuth flow, task probe, health and debug endpoints."""

import logging
import os
from datetime import datetime, timezone

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Route

from google_tasks_mcp.auth import AuthorizationStore, GoogleOAuthClient
from google_tasks_mcp.exceptions import NotAuthorizedError, OAuthExchangeError, TokenRefreshError
from google_tasks_mcp.settings import SERVER_NAME, SERVER_VERSION, GatewaySettings
from google_tasks_mcp.tasks_api import GoogleTasksClient

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current time as ISO 8601 with millisecond precision, e.g. 2025-08-01T10:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def create_oauth_routes(oauth_client: GoogleOAuthClient, auth_store: AuthorizationStore) -> list[Route]:
    async def oauth_start(request: Request) -> Response:
        return RedirectResponse(oauth_client.authorization_url(), status_code=302)

    async def oauth_callback(request: Request) -> Response:
        code = request.query_params.get("code")
        if not code:
            return PlainTextResponse("missing code", status_code=400)

        try:
            tokens = await oauth_client.exchange_code(code)
        except OAuthExchangeError as exc:
            logger.error("oauth error status=%s error=%s", exc.status_code, exc.error)
            return PlainTextResponse(f"oauth error: {exc.error}", status_code=500)
        except httpx.HTTPError as exc:
            logger.exception("oauth error")
            return PlainTextResponse(f"oauth error: {exc}", status_code=500)

        auth_store.set_tokens(tokens)
        logger.info("Google authorization stored")
        return PlainTextResponse("OAuth OK - now go to /tasks (with key)")

    return [
        Route("/oauth2/start", endpoint=oauth_start, methods=["GET"]),
        Route("/oauth2/callback", endpoint=oauth_callback, methods=["GET"]),
    ]


def create_tasks_routes(auth_store: AuthorizationStore, tasks_client: GoogleTasksClient) -> list[Route]:
    async def tasks_probe(request: Request) -> Response:
        """The first task list and its tasks, to check the authorization end to end."""
        try:
            headers = await auth_store.get_auth_header()
        except NotAuthorizedError:
            return PlainTextResponse("Authorize first at /oauth2/start", status_code=401)
        except TokenRefreshError:
            return PlainTextResponse("No access token; try /oauth2/start again", status_code=401)

        try:
            lists = await tasks_client.list_task_lists(headers)
            if not lists:
                return JSONResponse({"lists": [], "tasks": []})
            first = lists[0]
            tasks = await tasks_client.list_tasks(headers, first.id, show_completed=True)
        except httpx.HTTPError:
            logger.exception("tasks error")
            return PlainTextResponse("tasks error", status_code=500)

        return JSONResponse(
            {
                "list": first.model_dump(mode="json", exclude_none=True),
                "tasks": [task.model_dump(mode="json", exclude_none=True) for task in tasks],
            }
        )

    return [Route("/tasks", endpoint=tasks_probe, methods=["GET"])]


def create_status_routes(settings: GatewaySettings) -> list[Route]:
    async def index(request: Request) -> Response:
        return JSONResponse(
            {
                "message": f"Hello from {SERVER_NAME}!",
                "timestamp": utc_timestamp(),
                "environment": settings.environment,
            }
        )

    async def health(request: Request) -> Response:
        return JSONResponse({"status": "healthy", "timestamp": utc_timestamp()})

    async def hello(request: Request) -> Response:
        name = request.query_params.get("name") or "World"
        return JSONResponse({"message": f"Hello, {name}!", "timestamp": utc_timestamp()})

    async def mcp_health(request: Request) -> Response:
        return JSONResponse({"ok": True, "name": SERVER_NAME, "version": SERVER_VERSION})

    return [
        Route("/", endpoint=index, methods=["GET"]),
        Route("/health", endpoint=health, methods=["GET"]),
        Route("/api/hello", endpoint=hello, methods=["GET"]),
        Route("/mcp/health", endpoint=mcp_health, methods=["GET"]),
    ]


def create_debug_routes(settings: GatewaySettings) -> list[Route]:
    """Report which Google settings are configured. Secret values are never returned."""

    async def env_keys(request: Request) -> Response:
        return JSONResponse(
            {
                "keys": sorted(key for key in os.environ if key.startswith("GOOGLE_")),
                "id_len": len(settings.google_client_id or ""),
                "secret_len": len(settings.google_client_secret or ""),
                "redirect_len": len(settings.google_redirect_uri or ""),
            }
        )

    async def env(request: Request) -> Response:
        return JSONResponse(
            {
                "has_CLIENT_ID": bool(settings.google_client_id),
                "has_CLIENT_SECRET": bool(settings.google_client_secret),
                "redirect_uri": settings.google_redirect_uri,
            }
        )

    return [
        Route("/debug/envkeys", endpoint=env_keys, methods=["GET"]),
        Route("/debug/env", endpoint=env, methods=["GET"]),
    ]
