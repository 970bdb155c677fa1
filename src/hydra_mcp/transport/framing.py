"""Incremental framing for line-based wire formats.

Both decoders accept arbitrary chunks and keep the unconsumed tail for the
next chunk, so a frame split across reads is dispatched exactly once, whole.

SSE format (text/event-stream):
    event: message
    id: 42
    data: {"jsonrpc": "2.0", "id": 1, "result": "ok"}
    <blank line>
"""

from __future__ import annotations

from dataclasses import dataclass


class LineBuffer:
    """Splits a text stream on newlines, retaining the incomplete last line."""

    def __init__(self) -> None:
        self._tail = ""

    @property
    def pending(self) -> int:
        """Characters buffered waiting for a newline."""
        return len(self._tail)

    def feed(self, text: str) -> list[str]:
        """Add a chunk; return every line it completed (without terminators)."""
        if not text:
            return []
        *lines, self._tail = (self._tail + text).split("\n")
        return [line.removesuffix("\r") for line in lines]

    def flush(self) -> str | None:
        """Return the unterminated tail (at end of stream) and clear it."""
        tail, self._tail = self._tail, ""
        return tail.removesuffix("\r") or None


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched server-sent event."""

    event: str = "message"
    data: str = ""
    id: str | None = None


class SSEDecoder:
    """Incremental text/event-stream parser.

    Field handling:
    - ``event:`` sets the event type (defaults to "message")
    - ``data:`` lines accumulate, joined with newlines
    - ``id:`` sets the last event id, kept across events
    - ``:`` lines are comments / keep-alives and are ignored
    - unknown fields are ignored

    A blank line dispatches the accumulated event if it carries data.
    """

    def __init__(self) -> None:
        self._lines = LineBuffer()
        self._event_type = ""
        self._data: list[str] = []
        self.last_event_id: str | None = None

    @property
    def buffered(self) -> int:
        return self._lines.pending

    def feed(self, chunk: str) -> list[SSEEvent]:
        events = []
        for line in self._lines.feed(chunk):
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> SSEEvent | None:
        if line == "":
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event_type = value.strip()
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\x00" not in value:
                self.last_event_id = value.strip()
        return None

    def _dispatch(self) -> SSEEvent | None:
        event = None
        if self._data:
            event = SSEEvent(
                event=self._event_type or "message",
                data="\n".join(self._data),
                id=self.last_event_id,
            )
        self._event_type = ""
        self._data = []
        return event
