# src/llm_stream/providers/google.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, TypeAdapter

from llm_stream.core.stream import Delta
from llm_stream.providers.base import ModelOptions, compact, join_url, parse_json_event, require_key
from llm_stream.providers.registry import ProviderRegistry
from llm_stream.resilience.reconnect import DEFAULT_RECONNECT_POLICY
from llm_stream.transport.framing import RawEvent
from llm_stream.transport.http import RequestSpec

DEFAULT_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-1.5-pro"
DEFAULT_ENV = "GOOGLE_API_KEY"
DEFAULT_MAX_TOKENS = 4096

_ROLES = {"user": "user", "assistant": "model", "system": "user"}


class Part(BaseModel):
    text: Optional[str] = None


class Content(BaseModel):
    role: Optional[str] = None
    parts: List[Part] = Field(default_factory=list)


class Candidate(BaseModel):
    content: Optional[Content] = None
    finishReason: Optional[str] = None


class GenerateContentChunk(BaseModel):
    candidates: List[Candidate] = Field(default_factory=list)
    usageMetadata: Optional[Dict[str, Any]] = None


class Comment(BaseModel):
    comment: str = ""


_CHUNK: TypeAdapter = TypeAdapter(GenerateContentChunk)


@ProviderRegistry.register("google", "gemini")
class GoogleAdapter:
    """
    Gemini streamGenerateContent with alt=sse.
    There is no terminator event: the reply ends when the server closes the body.
    """
    name = "google"
    framing = "sse"
    reconnect_policy = DEFAULT_RECONNECT_POLICY
    default_env = DEFAULT_ENV

    def __init__(self, api_key: str, options: Optional[ModelOptions] = None):
        self.api_key = api_key
        self.options = options or ModelOptions()
        self.model = self.options.model or DEFAULT_MODEL

    @classmethod
    def create(cls, *, options: ModelOptions, secrets) -> "GoogleAdapter":
        return cls(api_key=require_key(secrets, cls.name), options=options)

    def build_request(self, messages: List[Dict[str, Any]]) -> RequestSpec:
        opts = self.options
        contents: List[Dict[str, Any]] = []
        for m in messages:
            entry = {"role": _ROLES.get(m["role"], "user"), "parts": [{"text": m["content"]}]}
            if m["role"] == "system":
                contents.insert(0, entry)
            else:
                contents.append(entry)
        if opts.system:
            contents.insert(0, {"role": "user", "parts": [{"text": opts.system}]})

        body = {
            "contents": contents,
            "generationConfig": compact({
                "maxOutputTokens": opts.max_tokens or DEFAULT_MAX_TOKENS,
                "temperature": opts.temperature,
                "topP": opts.top_p,
                "topK": opts.top_k,
            }),
        }
        url = join_url(opts.base_url or DEFAULT_URL, f"/models/{self.model}:streamGenerateContent")
        headers = {
            "x-goog-api-key": self.api_key,
            "content-type": "application/json",
            "accept": "text/event-stream",
        }
        return RequestSpec(url=url, body=body, headers=headers, params={"alt": "sse"})

    def decode(self, raw: RawEvent):
        if raw.is_comment:
            return Comment(comment=raw.comment or "")
        return parse_json_event(raw, _CHUNK)

    def extract(self, event) -> Delta:
        if not isinstance(event, GenerateContentChunk) or not event.candidates:
            return Delta("")
        content = event.candidates[0].content
        if content is None:
            return Delta("")
        return Delta("".join(p.text or "" for p in content.parts))

    def is_final(self, event) -> bool:
        return False
