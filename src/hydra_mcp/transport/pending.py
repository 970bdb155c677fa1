"""Pending-request table shared by every transport.

Entries are keyed by request id. Registration, settlement and expiry all run
on the event loop thread with no await in between, so a response and a
deadline racing for the same id resolve to exactly one outcome, and the
loser's timer is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..errors import ProtocolError, RequestTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """One outbound call awaiting its answer."""

    id: int
    method: str
    future: asyncio.Future[Any]
    timeout: float
    timer: asyncio.TimerHandle | None = None

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class PendingRequests:
    """Id-indexed table of pending requests with per-entry deadlines."""

    def __init__(self) -> None:
        self._entries: dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def ids(self) -> list[int]:
        return list(self._entries)

    def register(self, request_id: int, method: str, timeout: float) -> asyncio.Future[Any]:
        """Track a new request and arm its deadline timer."""
        if request_id in self._entries:
            raise ValueError(f"Duplicate request id: {request_id}")

        loop = asyncio.get_running_loop()
        entry = PendingRequest(
            id=request_id,
            method=method,
            future=loop.create_future(),
            timeout=timeout,
        )
        entry.timer = loop.call_later(timeout, self._expire, request_id)
        self._entries[request_id] = entry
        return entry.future

    def resolve(self, request_id: Any, result: Any) -> bool:
        """Settle with a result. Returns False if the id is not pending."""
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_result(result)
        return True

    def reject(self, request_id: Any, exc: BaseException) -> bool:
        """Settle with an exception. Returns False if the id is not pending."""
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_exception(exc)
        return True

    def settle(self, message: dict[str, Any]) -> bool:
        """Settle the entry named by a JSON-RPC response object."""
        request_id = message.get("id")
        if "error" in message and message["error"] is not None:
            return self.reject(request_id, ProtocolError.from_error(message["error"]))
        return self.resolve(request_id, message.get("result"))

    def discard(self, request_id: int) -> None:
        """Forget an entry without settling it (caller gave up on it)."""
        entry = self._pop(request_id)
        if entry is not None and not entry.future.done():
            entry.future.cancel()

    def reject_all(self, make_error: Callable[[], BaseException]) -> int:
        """Reject every pending entry; returns how many were rejected."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.cancel_timer()
            if not entry.future.done():
                entry.future.set_exception(make_error())
        return len(entries)

    def _pop(self, request_id: Any) -> PendingRequest | None:
        try:
            entry = self._entries.pop(request_id)
        except (KeyError, TypeError):
            return None
        entry.cancel_timer()
        return entry

    def _expire(self, request_id: int) -> None:
        entry = self._entries.pop(request_id, None)
        if entry is None:
            return
        entry.timer = None
        logger.debug(f"Request {request_id} ({entry.method}) timed out after {entry.timeout}s")
        if not entry.future.done():
            entry.future.set_exception(RequestTimeoutError(entry.method, entry.timeout))
