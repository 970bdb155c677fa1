"""Plain HTTP transport: one POST per JSON-RPC message.

The answer to a request is carried in the POST response body, either as a
JSON object (or batch array) or as a short ``text/event-stream``. Both are
dispatched through the same correlation path as the other transports.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

import httpx

from ..config import HttpServerConfig
from ..errors import InvalidStateError, SendError, StartupError
from ..protocol import JsonRpcNotification, JsonRpcRequest
from .base import Transport, TransportState
from .events import CloseInfo
from .framing import SSEDecoder

logger = logging.getLogger(__name__)

_CHECK_TIMEOUT = 5.0
_NO_CONTENT = (202, 204)


class _RetryableSendError(SendError):
    """Network failure or 5xx; worth another attempt."""


class HttpTransport(Transport):
    """Transport issuing one POST per outbound message.

    Requests run as background exchanges so ``request()`` waits on the
    pending table like every other transport; the request deadline covers
    the whole exchange, retries included.
    """

    transport_type = "http"

    def __init__(self, config: HttpServerConfig, *, client: httpx.AsyncClient | None = None):
        super().__init__(config)
        self.config: HttpServerConfig = config
        self._client = client
        self._owns_client = client is None
        self._inflight: set[asyncio.Task[None]] = set()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.request_timeout))
            self._owns_client = True
        return self._client

    # Lifecycle

    async def start(self) -> None:
        if self._state != TransportState.IDLE:
            raise InvalidStateError(f"Cannot start transport in state: {self._state.value}")

        self._set_state(TransportState.CONNECTING)
        await self._check_endpoint()
        if self._close_task is not None:
            raise StartupError(f"Transport closed during startup: {self.config.url}")
        self._set_state(TransportState.READY)
        self.events.ready.emit(None)
        logger.info(f"HTTP transport ready: {self.config.url}")

    async def _check_endpoint(self) -> None:
        # Many servers reject HEAD; only log
        try:
            response = await self._ensure_client().head(
                self.config.url, headers=self.config.headers, timeout=_CHECK_TIMEOUT
            )
        except httpx.HTTPError as e:
            logger.warning(f"HTTP endpoint check failed for {self.config.url}: {e}")
            return
        if not response.is_success:
            logger.warning(
                f"HTTP endpoint check returned {response.status_code} for {self.config.url}"
            )

    async def _shutdown(self) -> None:
        self._set_state(TransportState.CLOSING)

        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._inflight.clear()

        self._reject_pending("Transport closed")
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

        self._set_state(TransportState.CLOSED)
        self.events.close.emit(CloseInfo(reason="closed"))
        logger.info(f"HTTP transport closed: {self.config.url}")

    # Outbound

    async def _send(self, message: JsonRpcNotification) -> None:
        if isinstance(message, JsonRpcRequest):
            task = asyncio.create_task(self._exchange(message))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            return

        try:
            await self._post(message.to_json())
        except SendError as e:
            logger.warning(f"HTTP notification {message.method} failed: {e}")
            self.events.error.emit(e)

    async def _exchange(self, message: JsonRpcRequest) -> None:
        """POST a request and dispatch the body; failures reject that request."""
        try:
            await self._post_with_retry(message.id, message.to_json())
        except SendError as e:
            logger.warning(f"HTTP request {message.id} ({message.method}) failed: {e}")
            self._pending.reject(message.id, SendError(str(e)))

    async def _post_with_retry(self, request_id: int, body: str) -> None:
        policy = self.config.retry
        attempt = 0
        while True:
            try:
                await self._post(body)
                return
            except _RetryableSendError:
                if attempt >= policy.max_retries or request_id not in self._pending:
                    raise
            delay = policy.delay_for(attempt)
            attempt += 1
            logger.debug(
                f"Retrying HTTP request {request_id} in {delay:.2f}s "
                f"(attempt {attempt}/{policy.max_retries})"
            )
            await asyncio.sleep(delay)

    async def _post(self, body: str) -> None:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            **self.config.headers,
        }
        logger.debug(f"HTTP >> POST {self.config.url}: {body[:500]}")

        try:
            response = await self._ensure_client().post(
                self.config.url, content=body, headers=headers
            )
        except httpx.TransportError as e:
            raise _RetryableSendError(f"Request failed: {e}") from e
        except httpx.HTTPError as e:
            raise SendError(f"Request failed: {e}") from e

        if response.status_code >= 500:
            raise _RetryableSendError(
                f"Request failed: {response.status_code} {response.reason_phrase}"
            )
        if not response.is_success:
            raise SendError(f"Request failed: {response.status_code} {response.reason_phrase}")

        self._handle_body(response)

    # Inbound

    def _handle_body(self, response: httpx.Response) -> None:
        if response.status_code in _NO_CONTENT or not response.content:
            return

        text = response.text
        logger.debug(f"HTTP << {text[:500]}")

        content_type = response.headers.get("content-type", "")
        if content_type.startswith("text/event-stream"):
            decoder = SSEDecoder()
            for event in decoder.feed(text if text.endswith("\n\n") else text + "\n\n"):
                self._handle_text(event.data, event_type=event.event, event_id=event.id)
            return

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            self.events.output.emit(text)
            return

        messages = payload if isinstance(payload, list) else [payload]
        for message in messages:
            if isinstance(message, dict):
                self._dispatch(message)
            else:
                self.events.output.emit(json.dumps(message))

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info.update(url=self.config.url, inflight=len(self._inflight))
        return info
