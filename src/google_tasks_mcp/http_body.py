"""Buffering of MCP POST bodies so they can be inspected before the transport sees them."""

from __future__ import annotations

from dataclasses import dataclass

from starlette.datastructures import Headers
from starlette.requests import ClientDisconnect
from starlette.types import Message, Receive, Scope

DEFAULT_MAX_BODY_BYTES = 1_000_000


@dataclass(frozen=True)
class BodyTooLargeError(Exception):
    max_body_bytes: int

    def __str__(self) -> str:
        return f"Request body exceeds max_body_bytes={self.max_body_bytes}"


async def buffer_body(scope: Scope, receive: Receive, *, max_body_bytes: int = DEFAULT_MAX_BODY_BYTES) -> bytes:
    """Drain the request body from `receive`, refusing anything over `max_body_bytes`.

    A declared Content-Length above the cap is rejected before any chunk is
    read.

    Raises:
        BodyTooLargeError: the body is larger than the cap.
        ClientDisconnect: the client went away before the body was complete.
    """
    content_length = Headers(scope=scope).get("content-length", "")
    if content_length.isdigit() and int(content_length) > max_body_bytes:
        raise BodyTooLargeError(max_body_bytes)

    body = bytearray()
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            raise ClientDisconnect()
        body.extend(message.get("body", b""))
        if len(body) > max_body_bytes:
            raise BodyTooLargeError(max_body_bytes)
        if not message.get("more_body", False):
            return bytes(body)


def replay_body(body: bytes, receive: Receive) -> Receive:
    """ASGI receive that yields an already-read body once, then defers to `receive`.

    Lets the transport parse a request whose body the router consumed first.
    """
    sent = False

    async def wrapped() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return wrapped
