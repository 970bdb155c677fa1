"""Hydra MCP - transport layer for Model Context Protocol servers.

Connects a host to MCP servers over stdio subprocesses, SSE streams or plain
HTTP, with JSON-RPC request/response correlation, per-request deadlines and
typed lifecycle events.
"""

from .config import (
    HttpServerConfig,
    ReconnectConfig,
    RetryConfig,
    ServerConfigLoader,
    ServersFile,
    SseServerConfig,
    StdioServerConfig,
)
from .errors import (
    ConfigurationError,
    InvalidStateError,
    NotReadyError,
    ProtocolError,
    ReconnectExhaustedError,
    RequestTimeoutError,
    SecurityError,
    SendError,
    StartupError,
    TransportClosedError,
    TransportError,
)
from .security import CommandValidator, DefaultCommandValidator, ValidationResult
from .transport import (
    HttpTransport,
    SseTransport,
    StdioTransport,
    Transport,
    TransportFactory,
    TransportState,
    create_transport,
)

__version__ = "0.1.0"

__all__ = [
    # Transports
    "Transport",
    "TransportState",
    "StdioTransport",
    "SseTransport",
    "HttpTransport",
    "TransportFactory",
    "create_transport",
    # Configuration
    "StdioServerConfig",
    "SseServerConfig",
    "HttpServerConfig",
    "ReconnectConfig",
    "RetryConfig",
    "ServersFile",
    "ServerConfigLoader",
    # Security
    "CommandValidator",
    "DefaultCommandValidator",
    "ValidationResult",
    # Errors
    "TransportError",
    "ConfigurationError",
    "SecurityError",
    "StartupError",
    "InvalidStateError",
    "NotReadyError",
    "ProtocolError",
    "RequestTimeoutError",
    "SendError",
    "TransportClosedError",
    "ReconnectExhaustedError",
]
