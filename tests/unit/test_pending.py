"""Unit tests for the pending-request table."""

import asyncio

import pytest

from hydra_mcp.errors import ProtocolError, RequestTimeoutError, TransportClosedError
from hydra_mcp.transport.pending import PendingRequests


class TestSettlement:
    """Test resolving and rejecting entries."""

    @pytest.mark.asyncio
    async def test_resolve(self):
        """A result should resolve the matching future and clear the entry."""
        table = PendingRequests()
        future = table.register(1, "ping", 5.0)

        assert table.settle({"jsonrpc": "2.0", "id": 1, "result": "pong"}) is True
        assert await future == "pong"
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_error_rejects_with_protocol_error(self):
        """An error object should reject with ProtocolError."""
        table = PendingRequests()
        future = table.register(1, "fail", 5.0)

        table.settle({"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "boom"}})

        with pytest.raises(ProtocolError) as exc_info:
            await future
        assert exc_info.value.code == -32000

    @pytest.mark.asyncio
    async def test_unknown_id_ignored(self):
        """A response for an id that is not pending should be a no-op."""
        table = PendingRequests()
        future = table.register(1, "ping", 5.0)

        assert table.settle({"id": 99, "result": "x"}) is False
        assert not future.done()
        table.discard(1)

    @pytest.mark.asyncio
    async def test_no_cross_settlement(self):
        """Concurrent requests should each receive only their own result."""
        table = PendingRequests()
        first = table.register(1, "a", 5.0)
        second = table.register(2, "b", 5.0)

        table.settle({"id": 2, "result": "for-two"})
        table.settle({"id": 1, "result": "for-one"})

        assert await first == "for-one"
        assert await second == "for-two"

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self):
        """Registering an id twice should fail."""
        table = PendingRequests()
        table.register(1, "a", 5.0)

        with pytest.raises(ValueError):
            table.register(1, "b", 5.0)
        table.discard(1)

    @pytest.mark.asyncio
    async def test_discard_cancels_future(self):
        """discard() should forget the entry and cancel its future."""
        table = PendingRequests()
        future = table.register(1, "a", 5.0)

        table.discard(1)

        assert 1 not in table
        assert future.cancelled()


class TestDeadlines:
    """Test per-request deadlines."""

    @pytest.mark.asyncio
    async def test_timeout_rejects(self):
        """An unanswered request should reject with RequestTimeoutError."""
        table = PendingRequests()
        loop = asyncio.get_running_loop()
        started = loop.time()
        future = table.register(1, "slow", 0.05)

        with pytest.raises(RequestTimeoutError) as exc_info:
            await future

        assert loop.time() - started >= 0.04
        assert exc_info.value.method == "slow"
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_late_response_ignored(self):
        """A response arriving after the deadline should be dropped."""
        table = PendingRequests()
        future = table.register(1, "slow", 0.01)

        with pytest.raises(RequestTimeoutError):
            await future

        assert table.settle({"id": 1, "result": "late"}) is False

    @pytest.mark.asyncio
    async def test_settle_cancels_timer(self):
        """Settling should disarm the deadline."""
        table = PendingRequests()
        future = table.register(1, "ping", 0.05)
        table.settle({"id": 1, "result": "pong"})

        await asyncio.sleep(0.1)

        assert await future == "pong"


class TestRejectAll:
    """Test bulk rejection on close."""

    @pytest.mark.asyncio
    async def test_reject_all_settles_each_once(self):
        """Every entry should be rejected exactly once and the table emptied."""
        table = PendingRequests()
        futures = [table.register(i, "m", 5.0) for i in range(1, 4)]

        count = table.reject_all(lambda: TransportClosedError("Transport closed"))

        assert count == 3
        assert len(table) == 0
        for future in futures:
            with pytest.raises(TransportClosedError):
                await future

        assert table.reject_all(lambda: TransportClosedError("again")) == 0
