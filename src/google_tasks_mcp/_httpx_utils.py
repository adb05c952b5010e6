"""httpx clients for the gateway's outbound calls to Google."""

from collections.abc import Mapping
from typing import Any, Protocol

import httpx

from google_tasks_mcp.settings import SERVER_NAME, SERVER_VERSION

__all__ = ["GoogleHttpClientFactory", "create_google_http_client"]

USER_AGENT = f"{SERVER_NAME}/{SERVER_VERSION}"
DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


class GoogleHttpClientFactory(Protocol):
    def __call__(self, *, headers: Mapping[str, str] | None = None, **kwargs: Any) -> httpx.AsyncClient: ...


def create_google_http_client(*, headers: Mapping[str, str] | None = None, **kwargs: Any) -> httpx.AsyncClient:
    """Client for Google's OAuth and Tasks endpoints.

    Requests carry the gateway's User-Agent with `headers` merged on top.
    Redirects are followed and a 30 s timeout (10 s to connect) applies
    unless the caller overrides them. Use the client as an async context
    manager so its connections are released.

    Tests swap the network for an in-process handler:

        async with create_google_http_client(transport=httpx.MockTransport(handler)) as client:
            ...
    """
    kwargs.setdefault("follow_redirects", True)
    kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
    return httpx.AsyncClient(headers={"User-Agent": USER_AGENT, **(headers or {})}, **kwargs)
