from __future__ import annotations
from typing import Protocol, Any, Dict, List

from llm_stream.core.stream import Delta
from llm_stream.resilience.reconnect import ReconnectPolicy
from llm_stream.transport.framing import RawEvent
from llm_stream.transport.http import RequestSpec


class Backend(Protocol):
    """
    Interface every provider adapter implements. One adapter is active per
    invocation; nothing past the Delta boundary knows which one it was.
    """

    name: str
    framing: str  # "sse" | "ndjson"
    reconnect_policy: ReconnectPolicy

    def build_request(self, messages: List[Dict[str, Any]]) -> RequestSpec:
        """
        Build the POST for a streamed reply.
        'messages' are OpenAI-style: [{'role': 'system'|'user'|'assistant', 'content': '...'}, ...]
        """
        ...

    def decode(self, raw: RawEvent) -> Any:
        """Parse one framed event into the backend's typed event. Raises DecodeError."""
        ...

    def extract(self, event: Any) -> Delta:
        """Map a decoded event to its text fragment (empty for control events)."""
        ...

    def is_final(self, event: Any) -> bool:
        """True when the event marks the end of the reply."""
        ...


class Highlighter(Protocol):
    def render(self, data: bytes) -> str:
        """Return the complete highlighted rendering of `data`."""
        ...
