from collections.abc import Iterable

import pytest
from starlette.requests import ClientDisconnect
from starlette.types import Message, Receive, Scope

from google_tasks_mcp.http_body import BodyTooLargeError, buffer_body, replay_body


def _scope(headers: dict[str, str] | None = None) -> Scope:
    return {
        "type": "http",
        "method": "POST",
        "path": "/mcp",
        "headers": [(k.encode(), v.encode()) for k, v in (headers or {}).items()],
    }


def _receive(messages: Iterable[Message]) -> Receive:
    pending = list(messages)

    async def receive() -> Message:
        return pending.pop(0)

    return receive


@pytest.mark.anyio
async def test_chunks_are_joined():
    receive = _receive(
        [
            {"type": "http.request", "body": b'{"a":', "more_body": True},
            {"type": "http.request", "body": b"", "more_body": True},
            {"type": "http.request", "body": b" 1}", "more_body": False},
        ]
    )

    assert await buffer_body(_scope(), receive) == b'{"a": 1}'


@pytest.mark.anyio
async def test_declared_length_over_cap_is_rejected_before_reading():
    receive = _receive([])

    with pytest.raises(BodyTooLargeError) as excinfo:
        await buffer_body(_scope({"content-length": "11"}), receive, max_body_bytes=10)

    assert str(excinfo.value) == "Request body exceeds max_body_bytes=10"


@pytest.mark.anyio
async def test_streamed_body_over_cap_is_rejected():
    receive = _receive(
        [
            {"type": "http.request", "body": b"x" * 6, "more_body": True},
            {"type": "http.request", "body": b"x" * 6, "more_body": False},
        ]
    )

    with pytest.raises(BodyTooLargeError):
        await buffer_body(_scope({"content-length": "bogus"}), receive, max_body_bytes=10)


@pytest.mark.anyio
async def test_disconnect_while_reading():
    receive = _receive(
        [
            {"type": "http.request", "body": b"{", "more_body": True},
            {"type": "http.disconnect"},
        ]
    )

    with pytest.raises(ClientDisconnect):
        await buffer_body(_scope(), receive)


@pytest.mark.anyio
async def test_replay_yields_body_once_then_defers():
    receive = replay_body(b"payload", _receive([{"type": "http.disconnect"}]))

    assert await receive() == {"type": "http.request", "body": b"payload", "more_body": False}
    assert await receive() == {"type": "http.disconnect"}
