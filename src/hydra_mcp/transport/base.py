"""Transport base class and shared state machine.

Architecture:
- Transport is the client side of one MCP server connection
- Subclasses own the channel (subprocess pipes, SSE stream, HTTP POSTs)
- The base class owns what every channel shares: the state machine, request
  ids, the pending-request table, inbound dispatch and idempotent close

Lifecycle:
    IDLE -> STARTING/CONNECTING -> READY -> (CLOSING | RECONNECTING) -> CLOSED | ERROR
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar

from ..errors import NotReadyError, TransportClosedError
from ..protocol import JsonRpcNotification, JsonRpcRequest, MessageKind, classify
from .events import InboundMessage, StateChange, TransportEvents
from .pending import PendingRequests

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    """Connection state machine."""

    IDLE = "idle"
    STARTING = "starting"  # stdio: spawning the process
    CONNECTING = "connecting"  # sse/http: opening the connection
    READY = "ready"
    RECONNECTING = "reconnecting"  # sse only
    CLOSING = "closing"
    CLOSED = "closed"
    ERROR = "error"


class Transport(ABC):
    """Base class for client transports.

    Provides:
    - State management and the one-shot readiness signal
    - Monotonic request ids and the pending-request table
    - Routing of inbound JSON (correlated response vs. notification)
    - Idempotent close shared by concurrent callers
    """

    transport_type: ClassVar[str]

    def __init__(self, config: Any):
        self.config = config
        self.events = TransportEvents()
        self._state = TransportState.IDLE
        self._request_id = 0
        self._pending = PendingRequests()
        self._ready = asyncio.Event()
        self._close_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == TransportState.READY

    @property
    def request_count(self) -> int:
        """Number of request ids allocated so far."""
        return self._request_id

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def wait_ready(self) -> None:
        """Wait until the transport has been Ready at least once."""
        await self._ready.wait()

    # Lifecycle

    @abstractmethod
    async def start(self) -> None:
        """Open the channel and wait for readiness."""
        ...

    async def close(self) -> None:
        """Close the transport. Safe from any state, any number of times.

        Every pending request is rejected with TransportClosedError. Concurrent
        callers all wait for the same shutdown.
        """
        if self._close_task is None:
            self._close_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._close_task)

    @abstractmethod
    async def _shutdown(self) -> None:
        """Channel-specific teardown; runs once per close."""
        ...

    # Outbound

    async def request(
        self,
        method: str,
        params: dict[str, Any] | list[Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and wait for its correlated result.

        Raises:
            NotReadyError: transport is not Ready (nothing is sent)
            ProtocolError: the server answered with an error object
            RequestTimeoutError: no answer within the deadline
            SendError: the message could not be delivered
            TransportClosedError: the transport closed first
        """
        self._ensure_ready()

        request_id = self._next_request_id()
        deadline = timeout if timeout is not None else self.config.request_timeout
        message = JsonRpcRequest(
            id=request_id, method=method, params={} if params is None else params
        )
        future = self._pending.register(request_id, method, deadline)

        try:
            await self._send(message)
            return await future
        finally:
            # No-op once settled; clears the entry if the send failed or
            # the caller was cancelled
            self._pending.discard(request_id)
            if future.done() and not future.cancelled():
                future.exception()

    async def notify(
        self,
        method: str,
        params: dict[str, Any] | list[Any] | None = None,
    ) -> None:
        """Send a notification (no id, no answer expected)."""
        self._ensure_ready()
        params = {} if params is None else params
        await self._send(JsonRpcNotification(method=method, params=params))

    @abstractmethod
    async def _send(self, message: JsonRpcNotification) -> None:
        """Deliver one envelope to the remote."""
        ...

    # Inbound

    def _handle_text(
        self, text: str, event_type: str = "message", event_id: str | None = None
    ) -> None:
        """Decode one inbound frame. Anything that is not a JSON object is
        surfaced as raw diagnostic output, never raised.
        """
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            message = None
        if not isinstance(message, dict):
            logger.debug(f"Non-JSON output: {text[:200]}")
            self.events.output.emit(text)
            return
        self._dispatch(message, event_type, event_id)

    def _dispatch(
        self, message: dict[str, Any], event_type: str = "message", event_id: str | None = None
    ) -> None:
        """Route one decoded inbound JSON object.

        Responses settle their pending request; responses naming an unknown
        (expired, duplicate, stale) id are dropped. Everything else is
        surfaced as an inbound message.
        """
        if classify(message) == MessageKind.RESPONSE:
            if not self._pending.settle(message):
                logger.debug(f"Dropping response for unknown request id {message.get('id')!r}")
            return

        self.events.message.emit(
            InboundMessage(data=message, event_type=event_type, event_id=event_id)
        )

    # Helpers

    def _set_state(self, state: TransportState, force: bool = False) -> None:
        previous = self._state
        if previous == state and not force:
            return
        self._state = state
        logger.debug(f"{self.__class__.__name__} state {previous.value} -> {state.value}")
        if state == TransportState.READY:
            self._ready.set()
        self.events.state.emit(StateChange(previous=previous.value, current=state.value))

    def _ensure_ready(self) -> None:
        if self._state != TransportState.READY:
            raise NotReadyError(f"Transport not ready, current state: {self._state.value}")

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def _reject_pending(
        self, reason: str, error_type: type[TransportClosedError] = TransportClosedError
    ) -> int:
        count = self._pending.reject_all(lambda: error_type(reason))
        if count:
            logger.info(f"Rejected {count} pending request(s): {reason}")
        return count

    def get_info(self) -> dict[str, Any]:
        """Snapshot of the transport for diagnostics."""
        return {
            "type": self.transport_type,
            "state": self._state.value,
            "request_count": self._request_id,
            "pending_count": len(self._pending),
        }

    async def __aenter__(self) -> Transport:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
