import json
from typing import Any

import pytest

from google_tasks_mcp.messages import RequestKind, classify_message

INITIALIZE: dict[str, Any] = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-06-18",
        "capabilities": {},
        "clientInfo": {"name": "test-client", "version": "1.0"},
    },
}


def _encode(payload: Any) -> bytes:
    return json.dumps(payload).encode()


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        (_encode(INITIALIZE), RequestKind.INITIALIZE),
        (_encode({"jsonrpc": "2.0", "id": 2, "method": "tools/list"}), RequestKind.MESSAGE),
        (_encode({"jsonrpc": "2.0", "method": "notifications/initialized"}), RequestKind.MESSAGE),
        (_encode({"jsonrpc": "2.0", "id": 1, "result": {}}), RequestKind.MESSAGE),
        (_encode([INITIALIZE]), RequestKind.MESSAGE),
        (_encode({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}), RequestKind.MESSAGE),
        (b"{not json", RequestKind.MALFORMED),
        (b"", RequestKind.MALFORMED),
        (_encode([]), RequestKind.MALFORMED),
        (_encode({"hello": "world"}), RequestKind.MALFORMED),
        (_encode("initialize"), RequestKind.MALFORMED),
    ],
    ids=[
        "initialize",
        "request",
        "notification",
        "response",
        "batch",
        "initialize-without-client-info",
        "invalid-json",
        "empty-body",
        "empty-batch",
        "not-jsonrpc",
        "bare-string",
    ],
)
def test_classify_message(body: bytes, expected: RequestKind):
    assert classify_message(body) is expected
