"""API key protection for the MCP and task endpoints."""

import logging
from collections.abc import Sequence

from mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from starlette.requests import HTTPConnection
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"
DEFAULT_PROTECTED_PREFIXES = ("/mcp", "/tasks")


def extract_api_key(conn: HTTPConnection) -> str | None:
    """The caller's key: `?key=`, then `X-API-Key`, then `Authorization: Bearer`."""
    query_key = conn.query_params.get("key")
    if query_key:
        return query_key

    header_key = conn.headers.get(API_KEY_HEADER)
    if header_key:
        return header_key

    auth_header = conn.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


class ApiKeyMiddleware:
    """Require the gateway API key on protected path prefixes.

    OPTIONS requests pass through so CORS pre-flight keeps working. When no
    key is configured the check is disabled.
    """

    def __init__(
        self,
        app: ASGIApp,
        api_key: str | None,
        protected_prefixes: Sequence[str] = DEFAULT_PROTECTED_PREFIXES,
    ):
        self.app = app
        self.api_key = api_key or None
        self.protected_prefixes = tuple(protected_prefixes)

    def _is_protected(self, path: str) -> bool:
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self.protected_prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self._is_protected(scope["path"]):
            await self.app(scope, receive, send)
            return

        conn = HTTPConnection(scope)
        key = extract_api_key(conn)
        if scope["path"].startswith("/mcp"):
            logger.info(
                "MCP hit method=%s path=%s has_key=%s session_id=%s",
                scope["method"],
                scope["path"],
                key is not None,
                conn.headers.get(MCP_SESSION_ID_HEADER),
            )

        if scope["method"] == "OPTIONS" or self.api_key is None or key == self.api_key:
            await self.app(scope, receive, send)
            return

        response = PlainTextResponse("unauthorized", status_code=401)
        await response(scope, receive, send)
