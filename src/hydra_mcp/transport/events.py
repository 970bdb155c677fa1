"""Typed event registrations emitted by transports.

Each event kind is its own ``Signal`` with a fixed payload type, so
subscribers register against exactly the event they want:

    unsubscribe = transport.events.message.connect(on_message)
    ...
    unsubscribe()

Emission is fire-and-forget. Callbacks run inline on the event loop; a
callback returning an awaitable has it scheduled as a task. Exceptions raised
by subscribers are logged and never reach the transport's read loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class InboundMessage:
    """An unsolicited message from the server (notification or server request)."""

    data: dict[str, Any]
    event_type: str = "message"  # SSE event name; "message" for other transports
    event_id: str | None = None


@dataclass(frozen=True)
class CloseInfo:
    """Why a transport closed. Exit code/signal are set for subprocesses."""

    code: int | None = None
    signal: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class ReconnectInfo:
    """A scheduled reconnect attempt."""

    attempt: int
    delay: float


@dataclass(frozen=True)
class StateChange:
    previous: str
    current: str


class Signal(Generic[T]):
    """A single event kind with a list of subscribers."""

    def __init__(self, name: str):
        self.name = name
        self._callbacks: list[Callable[[T], Any]] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._callbacks)

    def connect(self, callback: Callable[[T], Any]) -> Callable[[], None]:
        """Register a callback. Returns a function that unregisters it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, payload: T) -> None:
        # Copy so callbacks may unsubscribe during emission
        for callback in list(self._callbacks):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
            except Exception:
                logger.exception(f"Error in subscriber for '{self.name}' event")

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Error in async subscriber for '{self.name}' event",
                exc_info=task.exception(),
            )


@dataclass
class TransportEvents:
    """All events a transport can emit."""

    ready: Signal[None] = field(default_factory=lambda: Signal("ready"))
    message: Signal[InboundMessage] = field(default_factory=lambda: Signal("message"))
    output: Signal[str] = field(default_factory=lambda: Signal("output"))
    stderr: Signal[str] = field(default_factory=lambda: Signal("stderr"))
    reconnecting: Signal[ReconnectInfo] = field(default_factory=lambda: Signal("reconnecting"))
    close: Signal[CloseInfo] = field(default_factory=lambda: Signal("close"))
    error: Signal[BaseException] = field(default_factory=lambda: Signal("error"))
    state: Signal[StateChange] = field(default_factory=lambda: Signal("state"))
