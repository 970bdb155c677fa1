"""Unit tests for HttpTransport against httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from hydra_mcp.config import HttpServerConfig, RetryConfig
from hydra_mcp.errors import (
    InvalidStateError,
    ProtocolError,
    RequestTimeoutError,
    SendError,
    StartupError,
    TransportClosedError,
)
from hydra_mcp.transport import HttpTransport, TransportState

URL = "http://mcp.test/mcp"
FAST_RETRY = RetryConfig(max_retries=2, base_delay=0.01, max_delay=0.05)

# =============================================================================
# Helpers
# =============================================================================


class FakeHttpServer:
    """Answers POSTs; ``responses`` overrides the next answers in order."""

    def __init__(self):
        self.posts: list[dict] = []
        self.heads = 0
        self.head_status = 405
        self.responses: list = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "HEAD":
            self.heads += 1
            return httpx.Response(self.head_status)

        message = json.loads(request.content)
        self.posts.append(message)
        if self.responses:
            answer = self.responses.pop(0)
            if isinstance(answer, Exception):
                raise answer
            return answer
        if "id" not in message:
            return httpx.Response(202)
        return httpx.Response(
            200, json={"jsonrpc": "2.0", "id": message["id"], "result": message["params"]}
        )


def make_transport(handler, **overrides):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    overrides.setdefault("retry", FAST_RETRY)
    return HttpTransport(HttpServerConfig(url=URL, **overrides), client=client), client


# =============================================================================
# Start
# =============================================================================


class TestStart:
    """Test the non-fatal HEAD check."""

    @pytest.mark.asyncio
    async def test_head_rejection_is_not_fatal(self):
        """A rejected HEAD still leaves the transport Ready."""
        server = FakeHttpServer()
        transport, client = make_transport(server.handler)

        async with client, transport:
            assert transport.state == TransportState.READY

        assert server.heads == 1

    @pytest.mark.asyncio
    async def test_head_network_error_is_not_fatal(self):
        """A failed HEAD still leaves the transport Ready."""
        def handler(request):
            if request.method == "HEAD":
                raise httpx.ConnectError("connection refused")
            return httpx.Response(202)

        transport, client = make_transport(handler)

        async with client, transport:
            assert transport.is_ready

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self):
        """A second start() raises InvalidStateError."""
        transport, client = make_transport(FakeHttpServer().handler)

        async with client, transport:
            with pytest.raises(InvalidStateError):
                await transport.start()

    @pytest.mark.asyncio
    async def test_close_while_starting(self):
        """close() during a slow HEAD leaves the transport Closed, not Ready."""
        server = FakeHttpServer()

        async def slow_handler(request):
            if request.method == "HEAD":
                await asyncio.sleep(0.2)
            return server.handler(request)

        transport, client = make_transport(slow_handler)
        readies = []
        transport.events.ready.connect(readies.append)

        async with client:
            start = asyncio.create_task(transport.start())
            await asyncio.sleep(0.05)
            await transport.close()

            with pytest.raises(StartupError, match="closed during startup"):
                await start

        assert transport.state == TransportState.CLOSED
        assert readies == []


# =============================================================================
# Requests
# =============================================================================


class TestRequests:
    """Test request/response through POST bodies."""

    @pytest.mark.asyncio
    async def test_json_body_resolves_request(self):
        """A JSON response body settles the request."""
        server = FakeHttpServer()
        transport, client = make_transport(server.handler)

        async with client, transport:
            result = await transport.request("echo", {"a": 1})

        assert result == {"a": 1}
        assert server.posts[0] == {"jsonrpc": "2.0", "method": "echo", "params": {"a": 1}, "id": 1}

    @pytest.mark.asyncio
    async def test_error_body(self):
        """An error body raises ProtocolError."""
        server = FakeHttpServer()
        server.responses = [
            httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "nope"}},
            )
        ]
        transport, client = make_transport(server.handler)

        async with client, transport:
            with pytest.raises(ProtocolError, match="nope") as exc_info:
                await transport.request("missing")

        assert exc_info.value.code == -32601

    @pytest.mark.asyncio
    async def test_sse_body(self):
        """A text/event-stream body should be decoded and dispatched."""
        server = FakeHttpServer()
        server.responses = [
            httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=b'event: message\ndata: {"jsonrpc":"2.0","id":1,"result":"streamed"}\n\n',
            )
        ]
        transport, client = make_transport(server.handler)

        async with client, transport:
            assert await transport.request("tools/list") == "streamed"

    @pytest.mark.asyncio
    async def test_batch_body_dispatched_per_element(self):
        """Each element of a batch body is dispatched."""
        server = FakeHttpServer()
        server.responses = [
            httpx.Response(
                200,
                json=[
                    {"jsonrpc": "2.0", "method": "notifications/progress", "params": {}},
                    {"jsonrpc": "2.0", "id": 1, "result": "done"},
                ],
            )
        ]
        transport, client = make_transport(server.handler)
        messages = []
        transport.events.message.connect(messages.append)

        async with client, transport:
            assert await transport.request("work") == "done"

        assert messages[0].data["method"] == "notifications/progress"

    @pytest.mark.asyncio
    async def test_non_json_body_becomes_output(self):
        """A non-JSON body is emitted as output."""
        server = FakeHttpServer()
        server.responses = [httpx.Response(200, text="plain text")]
        transport, client = make_transport(server.handler, request_timeout=0.1)
        output = []
        transport.events.output.connect(output.append)

        async with client, transport:
            with pytest.raises(RequestTimeoutError):
                await transport.request("odd")

        assert output == ["plain text"]


# =============================================================================
# Retries
# =============================================================================


class TestRetries:
    """Test retry of transient failures."""

    @pytest.mark.asyncio
    async def test_5xx_retried_then_succeeds(self):
        """Server errors are retried until one succeeds."""
        server = FakeHttpServer()
        server.responses = [httpx.Response(503), httpx.Response(502)]
        transport, client = make_transport(server.handler)

        async with client, transport:
            assert await transport.request("echo", {"n": 1}) == {"n": 1}

        assert len(server.posts) == 3

    @pytest.mark.asyncio
    async def test_network_error_retried(self):
        """Connection errors are retried."""
        server = FakeHttpServer()
        server.responses = [httpx.ConnectError("refused")]
        transport, client = make_transport(server.handler)

        async with client, transport:
            assert await transport.request("echo", {"n": 2}) == {"n": 2}

        assert len(server.posts) == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        """The last failure is raised once retries run out."""
        server = FakeHttpServer()
        server.responses = [httpx.Response(503) for _ in range(5)]
        transport, client = make_transport(server.handler)

        async with client, transport:
            with pytest.raises(SendError, match="503"):
                await transport.request("echo")
            assert transport.pending_count == 0

        assert len(server.posts) == 3

    @pytest.mark.asyncio
    async def test_4xx_not_retried(self):
        """Client errors fail on the first attempt."""
        server = FakeHttpServer()
        server.responses = [httpx.Response(404)]
        transport, client = make_transport(server.handler)

        async with client, transport:
            with pytest.raises(SendError, match="404"):
                await transport.request("echo")

        assert len(server.posts) == 1

    @pytest.mark.asyncio
    async def test_deadline_covers_retries(self):
        """The request deadline bounds all attempts together."""
        server = FakeHttpServer()
        server.responses = [httpx.Response(503) for _ in range(5)]
        retry = RetryConfig(max_retries=5, base_delay=0.5, max_delay=0.5)
        transport, client = make_transport(server.handler, retry=retry)

        async with client, transport:
            with pytest.raises(RequestTimeoutError):
                await transport.request("echo", timeout=0.05)

        assert len(server.posts) == 1


# =============================================================================
# Notifications and close
# =============================================================================


class TestNotifyAndClose:
    """Test notifications and shutdown."""

    @pytest.mark.asyncio
    async def test_notify_accepted(self):
        """A notification is POSTed without an id."""
        server = FakeHttpServer()
        transport, client = make_transport(server.handler)

        async with client, transport:
            await transport.notify("notifications/initialized")

        assert "id" not in server.posts[0]

    @pytest.mark.asyncio
    async def test_notify_failure_reported_as_event(self):
        """A failed notification is reported on the error event."""
        server = FakeHttpServer()
        server.responses = [httpx.Response(400)]
        transport, client = make_transport(server.handler)
        errors = []
        transport.events.error.connect(errors.append)

        async with client, transport:
            await transport.notify("notifications/cancelled")

        assert isinstance(errors[0], SendError)

    @pytest.mark.asyncio
    async def test_close_cancels_inflight_and_rejects(self):
        """close() cancels in-flight POSTs and rejects their requests."""
        gate = asyncio.Event()

        async def handler(request):
            if request.method == "HEAD":
                return httpx.Response(200)
            await gate.wait()
            return httpx.Response(202)

        transport, client = make_transport(handler)
        closes = []
        transport.events.close.connect(closes.append)

        async with client:
            await transport.start()
            task = asyncio.create_task(transport.request("hang"))
            while transport.get_info()["inflight"] == 0:
                await asyncio.sleep(0.005)

            await transport.close()
            await transport.close()

            with pytest.raises(TransportClosedError):
                await task

        assert transport.state == TransportState.CLOSED
        assert transport.get_info()["inflight"] == 0
        assert len(closes) == 1
