# src/llm_stream/providers/ollama.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, TypeAdapter

from llm_stream.core.stream import Delta
from llm_stream.providers.base import ModelOptions, compact, join_url, parse_json_event
from llm_stream.providers.registry import ProviderRegistry
from llm_stream.resilience.reconnect import DEFAULT_RECONNECT_POLICY
from llm_stream.transport.framing import RawEvent
from llm_stream.transport.http import RequestSpec

DEFAULT_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3.2"
CHAT_PATH = "/api/chat"


class OllamaMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class ChatChunk(BaseModel):
    model: str = ""
    message: Optional[OllamaMessage] = None
    done: bool = False


_CHUNK: TypeAdapter = TypeAdapter(ChatChunk)


@ProviderRegistry.register("ollama")
class OllamaAdapter:
    """Local Ollama server: newline-delimited JSON, no credentials."""
    name = "ollama"
    framing = "ndjson"
    reconnect_policy = DEFAULT_RECONNECT_POLICY
    default_env = None

    def __init__(self, options: Optional[ModelOptions] = None):
        self.options = options or ModelOptions()
        self.model = self.options.model or DEFAULT_MODEL

    @classmethod
    def create(cls, *, options: ModelOptions, secrets=None) -> "OllamaAdapter":
        return cls(options=options)

    def build_request(self, messages: List[Dict[str, Any]]) -> RequestSpec:
        opts = self.options
        turns = [{"role": m["role"], "content": m["content"]} for m in messages]
        if opts.system:
            turns.insert(0, {"role": "system", "content": opts.system})
        body: Dict[str, Any] = {"model": self.model, "stream": True, "messages": turns}
        options = compact({"temperature": opts.temperature, "top_p": opts.top_p, "top_k": opts.top_k})
        if options:
            body["options"] = options
        headers = {"content-type": "application/json", "accept": "application/x-ndjson"}
        return RequestSpec(url=join_url(opts.base_url or DEFAULT_URL, CHAT_PATH), body=body, headers=headers)

    def decode(self, raw: RawEvent) -> ChatChunk:
        return parse_json_event(raw, _CHUNK)

    def extract(self, event: ChatChunk) -> Delta:
        return Delta(event.message.content if event.message else "")

    def is_final(self, event: ChatChunk) -> bool:
        return event.done
