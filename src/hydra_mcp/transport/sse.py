"""Server-Sent Events (SSE) transport.

Inbound traffic arrives on one long-lived ``GET`` stream; outbound calls are
POSTed to a companion endpoint and their answers come back on the stream,
correlated by JSON-RPC id.

Handles:
- Incremental SSE parsing (events split across reads)
- Automatic reconnection with exponential backoff
- Request endpoint discovery (config, ``endpoint`` event, URL suffix)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from typing import Any

import httpx

from ..config import SseServerConfig
from ..errors import (
    InvalidStateError,
    ReconnectExhaustedError,
    SendError,
    StartupError,
)
from ..protocol import JsonRpcNotification
from .base import Transport, TransportState
from .events import CloseInfo, ReconnectInfo
from .framing import SSEDecoder, SSEEvent

logger = logging.getLogger(__name__)

_SSE_PATH_SUFFIX = re.compile(r"/sse/?$")

# MCP servers announce their POST endpoint with this event type
ENDPOINT_EVENT = "endpoint"


def derive_request_url(stream_url: str) -> str | None:
    """``https://host/mcp/sse?k=v`` -> ``https://host/mcp/request?k=v``."""
    url = httpx.URL(stream_url)
    if not _SSE_PATH_SUFFIX.search(url.path):
        return None
    return str(url.copy_with(path=_SSE_PATH_SUFFIX.sub("/request", url.path)))


class SseTransport(Transport):
    """Transport over an SSE stream plus a POST request endpoint.

    A stream that ends or fails while Ready moves the transport to
    RECONNECTING; pending requests survive reconnects and are only failed by
    close() or by exhausting the reconnect budget.
    """

    transport_type = "sse"

    def __init__(self, config: SseServerConfig, *, client: httpx.AsyncClient | None = None):
        super().__init__(config)
        self.config: SseServerConfig = config
        self._client = client
        self._owns_client = client is None
        self._response: httpx.Response | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._decoder = SSEDecoder()
        self._announced_endpoint: str | None = None
        self._reconnect_attempts = 0

    @property
    def request_url(self) -> str | None:
        """Where outbound calls are POSTed, or None if not known yet."""
        if self.config.message_url:
            return self.config.message_url
        if self._announced_endpoint:
            return self._announced_endpoint
        return derive_request_url(self.config.url)

    @property
    def last_event_id(self) -> str | None:
        return self._decoder.last_event_id

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.request_timeout))
            self._owns_client = True
        return self._client

    # Lifecycle

    async def start(self) -> None:
        """Open the stream. A failed first connect is fatal (no reconnect).

        Raises:
            InvalidStateError: not in IDLE or CLOSED
            StartupError: network failure or non-2xx response
        """
        if self._state not in (TransportState.IDLE, TransportState.CLOSED):
            raise InvalidStateError(f"Cannot start transport in state: {self._state.value}")

        self._close_task = None
        self._reconnect_attempts = 0
        self._set_state(TransportState.CONNECTING)

        try:
            await self._connect()
        except (httpx.HTTPError, StartupError) as e:
            if self._close_task is not None:
                # close() already released everything
                if isinstance(e, StartupError):
                    raise
                raise StartupError(f"Transport closed during startup: {e}") from e
            logger.error(f"SSE connection to {self.config.url} failed: {e}")
            self._set_state(TransportState.ERROR)
            self.events.error.emit(e)
            await self._release_client()
            if isinstance(e, StartupError):
                raise
            raise StartupError(f"SSE connection failed: {e}") from e

    async def _connect(self) -> None:
        client = self._ensure_client()

        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        headers.update(self.config.headers)
        if self._decoder.last_event_id:
            headers["Last-Event-ID"] = self._decoder.last_event_id

        request = client.build_request(
            "GET",
            self.config.url,
            headers=headers,
            # No read timeout: the stream may legitimately idle
            timeout=httpx.Timeout(self.config.connect_timeout, read=None),
        )
        response = await client.send(request, stream=True)

        if self._close_task is not None:
            await response.aclose()
            raise StartupError(f"Transport closed while connecting to {self.config.url}")

        if not response.is_success:
            await response.aclose()
            raise StartupError(
                f"SSE connection failed: {response.status_code} {response.reason_phrase}"
            )

        decoder = SSEDecoder()
        decoder.last_event_id = self._decoder.last_event_id
        self._decoder = decoder
        self._response = response
        self._reconnect_attempts = 0

        self._set_state(TransportState.READY)
        self.events.ready.emit(None)
        logger.info(f"SSE stream connected: {self.config.url}")

        self._reader_task = asyncio.create_task(self._read_stream(response))

    async def _read_stream(self, response: httpx.Response) -> None:
        try:
            async for chunk in response.aiter_text():
                for event in self._decoder.feed(chunk):
                    self._handle_event(event)
            logger.info(f"SSE stream ended: {self.config.url}")
        except httpx.HTTPError as e:
            logger.warning(f"SSE connection lost: {e}")
            self.events.error.emit(e)
        finally:
            with contextlib.suppress(httpx.HTTPError):
                await response.aclose()

        if self._state == TransportState.READY:
            self._handle_disconnect()

    def _handle_disconnect(self) -> None:
        self._response = None
        self._set_state(TransportState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        policy = self.config.reconnect

        while self._reconnect_attempts < policy.max_attempts:
            delay = policy.delay_for(self._reconnect_attempts)
            # Each further attempt is its own Reconnecting transition
            self._set_state(TransportState.RECONNECTING, force=self._reconnect_attempts > 0)
            self.events.reconnecting.emit(
                ReconnectInfo(attempt=self._reconnect_attempts + 1, delay=delay)
            )
            logger.warning(
                f"SSE reconnect attempt {self._reconnect_attempts + 1}/{policy.max_attempts} "
                f"in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            self._reconnect_attempts += 1

            try:
                await self._connect()
                return
            except (httpx.HTTPError, StartupError) as e:
                logger.warning(f"SSE reconnect failed: {e}")
                self.events.error.emit(e)

        error = ReconnectExhaustedError(
            f"Max reconnection attempts reached ({policy.max_attempts})"
        )
        logger.error(f"{error}: {self.config.url}")
        self._set_state(TransportState.ERROR)
        self._reject_pending(str(error), ReconnectExhaustedError)
        self.events.error.emit(error)

    async def _shutdown(self) -> None:
        self._set_state(TransportState.CLOSING)

        for task in (self._reader_task, self._reconnect_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reader_task = None
        self._reconnect_task = None
        self._response = None

        self._reject_pending("Transport closed")
        await self._release_client()

        self._set_state(TransportState.CLOSED)
        self.events.close.emit(CloseInfo(reason="closed"))
        logger.info(f"SSE transport closed: {self.config.url}")

    async def _release_client(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # Inbound

    def _handle_event(self, event: SSEEvent) -> None:
        if event.event == ENDPOINT_EVENT:
            endpoint = event.data.strip()
            self._announced_endpoint = str(httpx.URL(self.config.url).join(endpoint))
            logger.info(f"SSE request endpoint announced: {self._announced_endpoint}")
            return

        logger.debug(f"SSE << {event.event}: {event.data[:500]}")
        self._handle_text(event.data, event_type=event.event, event_id=event.id)

    # Outbound

    async def _send(self, message: JsonRpcNotification) -> None:
        url = self.request_url
        if url is None:
            raise SendError(
                "No request endpoint: set message_url or wait for the server's endpoint event"
            )

        body = message.to_json()
        headers = {"Content-Type": "application/json", **self.config.headers}
        logger.debug(f"SSE >> POST {url}: {body[:500]}")

        try:
            response = await self._ensure_client().post(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise SendError(f"Request failed: {e}") from e

        if not response.is_success:
            raise SendError(f"Request failed: {response.status_code} {response.reason_phrase}")

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info.update(
            url=self.config.url,
            request_url=self.request_url,
            last_event_id=self.last_event_id,
            reconnect_attempts=self._reconnect_attempts,
        )
        return info
