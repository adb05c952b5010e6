import httpx
import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import HTTPConnection, Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route

from google_tasks_mcp.middleware import ApiKeyMiddleware, extract_api_key


async def ok(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def _app(api_key: str | None) -> Starlette:
    return Starlette(
        routes=[
            Route("/mcp", endpoint=ok, methods=["GET", "POST", "OPTIONS"]),
            Route("/mcp/health", endpoint=ok),
            Route("/tasks", endpoint=ok),
            Route("/health", endpoint=ok),
            Route("/mcpx", endpoint=ok),
        ],
        middleware=[Middleware(ApiKeyMiddleware, api_key=api_key)],
    )


def _client(api_key: str | None) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=_app(api_key)), base_url="http://testserver")


def _conn(path: str = "/mcp", query: bytes = b"", headers: dict[str, str] | None = None) -> HTTPConnection:
    scope = {
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": query,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    return HTTPConnection(scope)


class TestExtractApiKey:
    def test_query_parameter_wins(self):
        conn = _conn(query=b"key=from-query", headers={"X-API-Key": "from-header", "Authorization": "Bearer b"})
        assert extract_api_key(conn) == "from-query"

    def test_header_before_bearer(self):
        conn = _conn(headers={"X-API-Key": "from-header", "Authorization": "Bearer from-bearer"})
        assert extract_api_key(conn) == "from-header"

    def test_bearer(self):
        assert extract_api_key(_conn(headers={"Authorization": "bearer from-bearer"})) == "from-bearer"

    def test_other_auth_schemes_are_ignored(self):
        assert extract_api_key(_conn(headers={"Authorization": "Basic dXNlcjpwYXNz"})) is None
        assert extract_api_key(_conn(headers={"Authorization": "Bearer "})) is None

    def test_missing(self):
        assert extract_api_key(_conn()) is None


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/mcp", "/mcp/health", "/tasks"])
async def test_protected_paths_require_key(path: str):
    async with _client("secret") as client:
        denied = await client.get(path)
        wrong = await client.get(path, headers={"X-API-Key": "nope"})
        allowed = await client.get(path, params={"key": "secret"})

    assert denied.status_code == 401
    assert denied.text == "unauthorized"
    assert wrong.status_code == 401
    assert allowed.status_code == 200


@pytest.mark.anyio
async def test_unprotected_paths_pass():
    async with _client("secret") as client:
        assert (await client.get("/health")).status_code == 200
        assert (await client.get("/mcpx")).status_code == 200


@pytest.mark.anyio
async def test_options_bypasses_key_check():
    async with _client("secret") as client:
        response = await client.options("/mcp")

    assert response.status_code == 200


@pytest.mark.anyio
async def test_bearer_key_accepted():
    async with _client("secret") as client:
        response = await client.post("/mcp", headers={"Authorization": "Bearer secret"})

    assert response.status_code == 200


@pytest.mark.anyio
async def test_no_configured_key_disables_check():
    async with _client(None) as client:
        assert (await client.get("/mcp")).status_code == 200
        assert (await client.get("/tasks")).status_code == 200
