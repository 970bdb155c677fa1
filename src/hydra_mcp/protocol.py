"""JSON-RPC 2.0 envelopes exchanged with MCP servers.

Outbound messages are pydantic models serialized to one JSON object.
Inbound messages stay plain dicts: servers send whatever they send, and the
transports only need to classify them, never to reject them.

Wire format:
    request:      {"jsonrpc": "2.0", "method": "ping", "params": {}, "id": 1}
    notification: {"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}}
    response:     {"jsonrpc": "2.0", "id": 1, "result": ...}
    error:        {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "..."}}
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

JSONRPC_VERSION = "2.0"


class MessageKind(str, Enum):
    """Classification of an inbound JSON object."""

    RESPONSE = "response"
    REQUEST = "request"  # Server-initiated call (has method and id)
    NOTIFICATION = "notification"
    UNKNOWN = "unknown"


class JsonRpcNotification(BaseModel):
    """A call that expects no answer."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str
    params: dict[str, Any] | list[Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json()

    def to_line(self) -> bytes:
        """Frame for newline-delimited transports."""
        return (self.to_json() + "\n").encode("utf-8")


class JsonRpcRequest(JsonRpcNotification):
    """A call correlated to its answer by ``id``."""

    id: int


def classify(message: dict[str, Any]) -> MessageKind:
    """Classify an inbound JSON object by its members."""
    has_id = message.get("id") is not None
    if "method" in message:
        return MessageKind.REQUEST if has_id else MessageKind.NOTIFICATION
    if has_id and ("result" in message or "error" in message):
        return MessageKind.RESPONSE
    return MessageKind.UNKNOWN
