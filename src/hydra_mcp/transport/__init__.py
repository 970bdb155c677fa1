"""Client transports for MCP servers.

Provides one interface over three channels:
- stdio - MCP server launched as a subprocess, JSON lines on stdin/stdout
- sse - Server-Sent Events stream for inbound traffic, POST for outbound
- http - one POST per message, answer in the response body

Every transport shares the same state machine, request correlation and
event registrations, so callers can switch channels without code changes.
"""

from .base import Transport, TransportState
from .events import (
    CloseInfo,
    InboundMessage,
    ReconnectInfo,
    Signal,
    StateChange,
    TransportEvents,
)
from .factory import TransportFactory, TransportType, create_transport
from .http import HttpTransport
from .sse import SseTransport
from .stdio import StdioTransport

__all__ = [
    # Base abstractions
    "Transport",
    "TransportState",
    # Events
    "TransportEvents",
    "Signal",
    "InboundMessage",
    "CloseInfo",
    "ReconnectInfo",
    "StateChange",
    # Implementations
    "StdioTransport",
    "SseTransport",
    "HttpTransport",
    # Factory
    "TransportFactory",
    "TransportType",
    "create_transport",
]
