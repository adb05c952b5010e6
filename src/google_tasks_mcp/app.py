"""Starlette application factory for the gateway."""

import contextlib
import logging
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from google_tasks_mcp.auth import AuthorizationStore, GoogleOAuthClient
from google_tasks_mcp.middleware import ApiKeyMiddleware
from google_tasks_mcp.routes import create_debug_routes, create_oauth_routes, create_status_routes, create_tasks_routes
from google_tasks_mcp.routing import MCPEndpoint
from google_tasks_mcp.sessions import SessionManager
from google_tasks_mcp.settings import GatewaySettings
from google_tasks_mcp.tasks_api import GoogleTasksClient
from google_tasks_mcp.tools import TasksToolset, create_server

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"


async def not_found(request: Request, exc: Exception) -> Response:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return JSONResponse({"error": "Route not found", "path": path}, status_code=404)


async def server_error(request: Request, exc: Exception) -> Response:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"error": "Something went wrong!"}, status_code=500)


def create_app(
    settings: GatewaySettings | None = None,
    *,
    oauth_client: GoogleOAuthClient | None = None,
    auth_store: AuthorizationStore | None = None,
    tasks_client: GoogleTasksClient | None = None,
    session_manager: SessionManager | None = None,
) -> Starlette:
    """Wire the gateway together.

    Every collaborator can be injected; anything not given is built from
    `settings` (read from the environment when omitted). The session manager
    runs inside the app lifespan.
    """
    settings = settings or GatewaySettings()
    oauth_client = oauth_client or GoogleOAuthClient(
        settings.google_client_id,
        settings.google_client_secret,
        settings.google_redirect_uri,
    )
    auth_store = auth_store or AuthorizationStore(oauth_client)
    tasks_client = tasks_client or GoogleTasksClient()
    if session_manager is None:
        server = create_server(TasksToolset(auth_store, tasks_client))
        session_manager = SessionManager(server, json_response=settings.mcp_force_json)

    if not settings.mcp_api_key:
        logger.warning("MCP_API_KEY is not set; /mcp and /tasks are not key-protected")

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with session_manager.run():
            yield

    routes = [
        *create_status_routes(settings),
        *create_oauth_routes(oauth_client, auth_store),
        *create_tasks_routes(auth_store, tasks_client),
        *create_debug_routes(settings),
        Route(
            MCP_PATH,
            endpoint=MCPEndpoint(session_manager, max_body_bytes=settings.max_body_bytes),
            methods=["GET", "POST", "DELETE"],
        ),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Mcp-Session-Id", "X-API-Key", "Authorization"],
            expose_headers=["Mcp-Session-Id"],
        ),
        Middleware(ApiKeyMiddleware, api_key=settings.mcp_api_key),
    ]

    app = Starlette(
        routes=routes,
        middleware=middleware,
        lifespan=lifespan,
        exception_handlers={404: not_found, Exception: server_error},
    )
    app.state.settings = settings
    app.state.auth_store = auth_store
    app.state.session_manager = session_manager
    return app
