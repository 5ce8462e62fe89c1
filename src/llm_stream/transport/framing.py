"""
Wire framing: turns the lines of a streamed HTTP body into raw events.

Two framings exist:
- "sse":    Server-Sent Events (`event:` / `data:` / `id:` fields, blank line dispatches)
- "ndjson": one JSON document per line

Neither framer looks inside the payload; that is the backend decoder's job.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class RawEvent:
    data: str = ""
    event: str = "message"
    id: Optional[str] = None
    comment: Optional[str] = None  # set only for SSE ": ..." lines

    @property
    def is_comment(self) -> bool:
        return self.comment is not None


class SSEFramer:
    """
    Incremental SSE parser following the WHATWG event-stream rules, except that
    RawEvent.id is only set on the event whose block carried the `id:` line.
    Resuming with Last-Event-ID and replay suppression are the transport's job.
    """

    def __init__(self) -> None:
        self._data: List[str] = []
        self._event = ""
        self._current_id: Optional[str] = None
        self.retry_ms: Optional[int] = None

    def feed(self, line: str) -> List[RawEvent]:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return [RawEvent(comment=line[1:].lstrip(" "))]

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            if "\0" not in value:
                self._current_id = value
        elif field == "retry":
            if value.isdigit():
                self.retry_ms = int(value)
        # unknown fields are ignored
        return []

    def flush(self) -> List[RawEvent]:
        # An event without its terminating blank line is incomplete and dropped.
        self._data = []
        self._event = ""
        self._current_id = None
        return []

    def _dispatch(self) -> List[RawEvent]:
        if not self._data:
            self._event = ""
            self._current_id = None
            return []
        ev = RawEvent(data="\n".join(self._data), event=self._event or "message", id=self._current_id)
        self._data = []
        self._event = ""
        self._current_id = None
        return [ev]


class NDJSONFramer:
    retry_ms: Optional[int] = None

    def feed(self, line: str) -> List[RawEvent]:
        line = line.strip()
        return [RawEvent(data=line)] if line else []

    def flush(self) -> List[RawEvent]:
        return []


def framer_for(framing: str):
    name = framing.lower()
    if name == "sse":
        return SSEFramer()
    if name == "ndjson":
        return NDJSONFramer()
    raise ValueError(f"Unknown framing '{framing}' (expected 'sse' or 'ndjson').")
