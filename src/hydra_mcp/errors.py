"""Exception taxonomy for the transport layer.

Connection-scoped errors (startup, closed, reconnect exhausted) fail every
pending request. Request-scoped errors (protocol, timeout, send) fail only the
call that produced them; the transport stays usable.
"""

from __future__ import annotations

from typing import Any


class TransportError(Exception):
    """Base class for all transport-layer errors."""


class ConfigurationError(TransportError):
    """Bad transport type or invalid transport/server configuration."""


class SecurityError(TransportError):
    """The command validator rejected an executable or its arguments.

    Raised before any subprocess is created.
    """

    def __init__(self, command: str, reason: str):
        super().__init__(f"Security: MCP server command rejected: {reason}")
        self.command = command
        self.reason = reason


class StartupError(TransportError):
    """Spawn failure, non-OK connect, or startup timeout."""


class InvalidStateError(TransportError):
    """Lifecycle call made from a state that does not allow it."""


class NotReadyError(TransportError):
    """request()/notify() called while the transport is not Ready."""


class SendError(TransportError):
    """An outbound message could not be delivered to the remote."""


class TransportClosedError(TransportError):
    """The transport was closed (or its channel died) with the call pending."""


class ReconnectExhaustedError(TransportClosedError):
    """SSE reconnection gave up after the configured number of attempts."""


class RequestTimeoutError(TransportError, TimeoutError):
    """No correlated answer arrived within the request deadline."""

    def __init__(self, method: str, timeout: float):
        super().__init__(f"Request timeout after {timeout}s: {method}")
        self.method = method
        self.timeout = timeout


class ProtocolError(TransportError):
    """Error object reported by the remote for one request."""

    def __init__(self, message: str, code: int | None = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data

    @classmethod
    def from_error(cls, error: Any) -> ProtocolError:
        """Build from the ``error`` member of a JSON-RPC response."""
        if isinstance(error, dict):
            code = error.get("code")
            return cls(
                str(error.get("message") or "Unknown MCP error"),
                code=code if isinstance(code, int) else None,
                data=error.get("data"),
            )
        return cls(str(error) if error else "Unknown MCP error")

    def __repr__(self) -> str:
        return f"ProtocolError(code={self.code!r}, message={str(self)!r})"
