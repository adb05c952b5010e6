"""Decode an incoming MCP POST body into the kind of request it carries."""

import json
from enum import Enum
from typing import Any

import mcp.types as types
from pydantic import ValidationError


class RequestKind(str, Enum):
    INITIALIZE = "initialize"
    """A single JSON-RPC `initialize` request; the only message that may open a session."""

    MESSAGE = "message"
    """Any other JSON-RPC payload, including batches."""

    MALFORMED = "malformed"
    """Not JSON, or not a JSON-RPC message."""


def classify_message(body: bytes) -> RequestKind:
    try:
        payload: Any = json.loads(body)
    except ValueError:
        return RequestKind.MALFORMED

    if isinstance(payload, list):
        return RequestKind.MESSAGE if payload else RequestKind.MALFORMED

    try:
        message = types.JSONRPCMessage.model_validate(payload)
    except ValidationError:
        return RequestKind.MALFORMED

    if isinstance(message.root, types.JSONRPCRequest) and message.root.method == "initialize":
        try:
            types.InitializeRequest.model_validate(message.root.model_dump(by_alias=True, exclude_none=True))
        except ValidationError:
            return RequestKind.MESSAGE
        return RequestKind.INITIALIZE
    return RequestKind.MESSAGE
