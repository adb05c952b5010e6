"""ASGI endpoint for /mcp: dispatches each request to a new or existing session."""

import logging
from http import HTTPStatus

import anyio
import mcp.types as types
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from starlette.datastructures import Headers
from starlette.requests import ClientDisconnect, Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.types import Message, Receive, Scope, Send

from google_tasks_mcp.http_body import DEFAULT_MAX_BODY_BYTES, BodyTooLargeError, buffer_body, replay_body
from google_tasks_mcp.messages import RequestKind, classify_message
from google_tasks_mcp.sessions import SessionManager

logger = logging.getLogger(__name__)

# JSON-RPC server error used when a message arrives without a usable session
MISSING_SESSION = -32000

ACCEPT_BOTH = "application/json, text/event-stream"


def jsonrpc_error_response(status_code: int, code: int, message: str) -> JSONResponse:
    error = types.ErrorData(code=code, message=message)
    return JSONResponse(
        {"jsonrpc": "2.0", "error": error.model_dump(exclude_none=True), "id": None},
        status_code=status_code,
    )


def _replace_header(scope: Scope, name: str, value: str | None) -> Scope:
    raw_name = name.lower().encode("latin-1")
    headers = [(k, v) for k, v in scope["headers"] if k.lower() != raw_name]
    if value is not None:
        headers.append((raw_name, value.encode("latin-1")))
    return {**scope, "headers": headers}


def ensure_accept_header(scope: Scope) -> Scope:
    """Make sure a POST advertises both JSON and SSE, as the transport requires.

    Some clients send only one of the two (or nothing); the transport answers
    those with 406, so the header is normalized here.
    """
    accept = Headers(scope=scope).get("accept", "").lower()
    if "application/json" in accept and "text/event-stream" in accept:
        return scope
    return _replace_header(scope, "accept", ACCEPT_BOTH)


class _SendTracker:
    def __init__(self, send: Send):
        self._send = send
        self.response_started = False

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.response_started = True
        await self._send(message)


def _accepts_session(message: Message, session_id: str) -> bool:
    """Whether a response start is a 2xx that hands `session_id` to the client."""
    headers = Headers(raw=message.get("headers", []))
    return 200 <= message["status"] < 300 and headers.get(MCP_SESSION_ID_HEADER) == session_id


def _watch_disconnect(receive: Receive, method: str, session_id: str) -> Receive:
    async def wrapped() -> Message:
        message = await receive()
        if message["type"] == "http.disconnect":
            logger.info("MCP %s closed (session preserved by TTL): %s", method, session_id)
        return message

    return wrapped


class MCPEndpoint:
    """
    ASGI app serving POST, GET and DELETE on the MCP path.

    - POST with a known session id continues that session.
    - POST without one must carry an `initialize` request and opens a new session,
      kept only if the transport accepts the initialize.
    - GET and DELETE require a known session id; DELETE releases the session.

    Sessions are touched before and after the transport handles each request,
    so the idle deadline always counts from the latest completed request.
    """

    def __init__(self, session_manager: SessionManager, *, max_body_bytes: int = DEFAULT_MAX_BODY_BYTES):
        self.sessions = session_manager
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        tracked_send = _SendTracker(send)
        try:
            if request.method == "POST":
                await self._handle_post(request, scope, receive, tracked_send)
            elif request.method in ("GET", "DELETE"):
                await self._handle_session_request(request, scope, receive, tracked_send)
            else:
                response = PlainTextResponse(
                    "Method Not Allowed",
                    status_code=HTTPStatus.METHOD_NOT_ALLOWED,
                    headers={"Allow": "GET, POST, DELETE"},
                )
                await response(scope, receive, tracked_send)
        except Exception:
            logger.exception("mcp error (%s /mcp)", request.method)
            if not tracked_send.response_started:
                response = JSONResponse({"error": "mcp error"}, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)
                await response(scope, receive, send)

    async def _handle_post(self, request: Request, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            body = await buffer_body(scope, receive, max_body_bytes=self.max_body_bytes)
        except BodyTooLargeError as exc:
            response = jsonrpc_error_response(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, types.INVALID_REQUEST, str(exc))
            await response(scope, receive, send)
            return
        except ClientDisconnect:
            logger.info("MCP POST closed before the body was read")
            return

        session = self.sessions.lookup(request.headers.get(MCP_SESSION_ID_HEADER))
        if session is not None:
            self.sessions.touch(session.id)
            await session.transport.handle_request(
                ensure_accept_header(scope), _watch_disconnect(replay_body(body, receive), "POST", session.id), send
            )
            self.sessions.touch(session.id)
            return

        kind = classify_message(body)
        if kind is RequestKind.MALFORMED:
            response = jsonrpc_error_response(HTTPStatus.BAD_REQUEST, types.PARSE_ERROR, "Parse error")
            await response(scope, receive, send)
            return
        if kind is not RequestKind.INITIALIZE:
            response = jsonrpc_error_response(
                HTTPStatus.BAD_REQUEST,
                MISSING_SESSION,
                "Bad Request: No valid session ID provided (missing initialize)",
            )
            await response(scope, receive, send)
            return

        # A stale id from an expired session would make the transport refuse the initialize.
        scope = ensure_accept_header(_replace_header(scope, MCP_SESSION_ID_HEADER, None))
        await self._initialize_session(scope, body, receive, send)

    async def _initialize_session(self, scope: Scope, body: bytes, receive: Receive, send: Send) -> None:
        """Open a session for an initialize request.

        The session becomes ACTIVE when the transport starts a 2xx response
        carrying its id. Any other outcome releases it, since no client holds
        the id.
        """
        session = await self.sessions.create()
        accepted = False

        async def activate_on_accept(message: Message) -> None:
            nonlocal accepted
            if message["type"] == "http.response.start" and _accepts_session(message, session.id):
                accepted = True
                self.sessions.activate(session.id)
            await send(message)

        try:
            await session.transport.handle_request(
                scope, _watch_disconnect(replay_body(body, receive), "POST", session.id), activate_on_accept
            )
        finally:
            if not accepted:
                logger.info("MCP initialize rejected, releasing session %s", session.id)
                with anyio.CancelScope(shield=True):
                    await self.sessions.release(session.id)
        self.sessions.touch(session.id)

    async def _handle_session_request(self, request: Request, scope: Scope, receive: Receive, send: Send) -> None:
        session = self.sessions.lookup(request.headers.get(MCP_SESSION_ID_HEADER))
        if session is None:
            response = PlainTextResponse("Invalid or missing session ID", status_code=HTTPStatus.BAD_REQUEST)
            await response(scope, receive, send)
            return

        self.sessions.touch(session.id)
        await session.transport.handle_request(scope, _watch_disconnect(receive, request.method, session.id), send)

        if request.method == "DELETE":
            await self.sessions.release(session.id)
            logger.info("MCP session closed (DELETE): %s", session.id)
        else:
            self.sessions.touch(session.id)
