"""Unit tests for line and SSE framing."""

from hydra_mcp.transport.framing import LineBuffer, SSEDecoder, SSEEvent


class TestLineBuffer:
    """Test newline splitting across chunks."""

    def test_complete_lines(self):
        """Complete lines are returned and the remainder kept."""
        buffer = LineBuffer()

        assert buffer.feed("a\nb\n") == ["a", "b"]
        assert buffer.pending == 0

    def test_line_split_across_chunks(self):
        """A partial line should be held until its newline arrives."""
        buffer = LineBuffer()

        assert buffer.feed('{"id": ') == []
        assert buffer.pending == 7
        assert buffer.feed('1}\n{"id"') == ['{"id": 1}']
        assert buffer.feed(": 2}\n") == ['{"id": 2}']

    def test_crlf_stripped(self):
        """Windows line endings should not leak into lines."""
        assert LineBuffer().feed("x\r\ny\r\n") == ["x", "y"]

    def test_flush_returns_tail(self):
        """flush() should return the unterminated tail once."""
        buffer = LineBuffer()
        buffer.feed("tail")

        assert buffer.flush() == "tail"
        assert buffer.flush() is None


class TestSSEDecoder:
    """Test the incremental text/event-stream parser."""

    def test_single_event(self):
        """One event with type, id and data is decoded."""
        decoder = SSEDecoder()

        events = decoder.feed('data: {"id":1,"result":"ok"}\n\n')

        assert events == [SSEEvent(event="message", data='{"id":1,"result":"ok"}')]

    def test_event_split_across_chunks(self):
        """An event split mid-field should be dispatched once, whole."""
        decoder = SSEDecoder()

        assert decoder.feed('data: {"id":1,') == []
        assert decoder.feed('"result":"ok"}\n') == []
        events = decoder.feed("\n")

        assert len(events) == 1
        assert events[0].data == '{"id":1,"result":"ok"}'

    def test_multiline_data_joined_with_newline(self):
        """Several data lines join with a newline."""
        decoder = SSEDecoder()

        events = decoder.feed("data: first\ndata: second\n\n")

        assert events[0].data == "first\nsecond"

    def test_event_type_and_id(self):
        """event: and id: fields should be carried on the event."""
        decoder = SSEDecoder()

        events = decoder.feed("event: endpoint\nid: 42\ndata: /messages\n\n")

        assert events[0].event == "endpoint"
        assert events[0].id == "42"
        assert decoder.last_event_id == "42"

    def test_event_type_resets_between_events(self):
        """The event type applies to one event only."""
        decoder = SSEDecoder()

        events = decoder.feed("event: custom\ndata: a\n\ndata: b\n\n")

        assert [e.event for e in events] == ["custom", "message"]

    def test_last_event_id_persists(self):
        """The last id should carry over to later events without an id."""
        decoder = SSEDecoder()

        events = decoder.feed("id: 7\ndata: a\n\ndata: b\n\n")

        assert events[1].id == "7"

    def test_comments_ignored(self):
        """Keep-alive comments should produce no events."""
        decoder = SSEDecoder()

        assert decoder.feed(": keep-alive\n\n") == []

    def test_blank_line_without_data_dispatches_nothing(self):
        """A blank line with no data yields no event."""
        assert SSEDecoder().feed("event: ping\n\n") == []

    def test_field_without_space(self):
        """The space after the colon is optional."""
        assert SSEDecoder().feed("data:x\n\n")[0].data == "x"

    def test_unknown_fields_ignored(self):
        """Unrecognised fields are skipped."""
        assert SSEDecoder().feed("retry: 1000\ndata: x\n\n")[0].data == "x"

    def test_crlf_lines(self):
        """CRLF line endings decode like LF."""
        events = SSEDecoder().feed("data: x\r\n\r\n")

        assert events[0].data == "x"
