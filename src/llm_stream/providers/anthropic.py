# src/llm_stream/providers/anthropic.py
from __future__ import annotations
import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from llm_stream.core.stream import Delta
from llm_stream.providers.base import ModelOptions, compact, join_url, parse_json_event, require_key
from llm_stream.providers.registry import ProviderRegistry
from llm_stream.resilience.reconnect import DEFAULT_RECONNECT_POLICY
from llm_stream.transport.framing import RawEvent
from llm_stream.transport.http import RequestSpec

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://api.anthropic.com/v1"
DEFAULT_MODEL = "claude-3-5-sonnet-20240620"
DEFAULT_ENV = "ANTHROPIC_API_KEY"
DEFAULT_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096
MESSAGES_PATH = "/messages"


# ----- Messages API stream events -----

class BlockDelta(BaseModel):
    type: str = "text_delta"
    text: Optional[str] = None


class MessageStart(BaseModel):
    type: Literal["message_start"]
    message: Dict[str, Any] = Field(default_factory=dict)


class ContentBlockStart(BaseModel):
    type: Literal["content_block_start"]
    index: int = 0
    content_block: Dict[str, Any] = Field(default_factory=dict)


class ContentBlockDelta(BaseModel):
    type: Literal["content_block_delta"]
    index: int = 0
    delta: BlockDelta


class ContentBlockStop(BaseModel):
    type: Literal["content_block_stop"]
    index: int = 0


class MessageDelta(BaseModel):
    type: Literal["message_delta"]
    delta: Dict[str, Any] = Field(default_factory=dict)
    usage: Optional[Dict[str, Any]] = None


class MessageStop(BaseModel):
    type: Literal["message_stop"]


class Ping(BaseModel):
    type: Literal["ping"]


class Error(BaseModel):
    type: Literal["error"]
    error: Dict[str, Any] = Field(default_factory=dict)


class Comment(BaseModel):
    type: Literal["comment"] = "comment"
    comment: str = ""


AnthropicEvent = Annotated[
    Union[
        MessageStart,
        ContentBlockStart,
        ContentBlockDelta,
        ContentBlockStop,
        MessageDelta,
        MessageStop,
        Ping,
        Error,
        Comment,
    ],
    Field(discriminator="type"),
]

_EVENTS: TypeAdapter = TypeAdapter(AnthropicEvent)


@ProviderRegistry.register("anthropic", "claude")
class AnthropicAdapter:
    """
    Messages API over SSE.
    Only content_block_delta carries text; every other event is control traffic.
    """
    name = "anthropic"
    framing = "sse"
    reconnect_policy = DEFAULT_RECONNECT_POLICY
    default_env = DEFAULT_ENV

    def __init__(self, api_key: str, options: Optional[ModelOptions] = None):
        self.api_key = api_key
        self.options = options or ModelOptions()
        self.model = self.options.model or DEFAULT_MODEL

    @classmethod
    def create(cls, *, options: ModelOptions, secrets) -> "AnthropicAdapter":
        return cls(api_key=require_key(secrets, cls.name), options=options)

    def build_request(self, messages: List[Dict[str, Any]]) -> RequestSpec:
        opts = self.options
        system = opts.system
        turns: List[Dict[str, str]] = []
        for m in messages:
            # the Messages API takes the system prompt out of band
            if m["role"] == "system":
                system = system or m["content"]
                continue
            turns.append({"role": m["role"], "content": m["content"]})

        body = compact({
            "model": self.model,
            "messages": turns,
            "max_tokens": opts.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": True,
            "system": system,
            "temperature": opts.temperature,
            "top_p": opts.top_p,
            "top_k": opts.top_k,
        })
        headers = {
            "anthropic-version": opts.api_version or DEFAULT_VERSION,
            "content-type": "application/json",
            "accept": "text/event-stream",
            "x-api-key": self.api_key,
        }
        return RequestSpec(url=join_url(opts.base_url or DEFAULT_URL, MESSAGES_PATH), body=body, headers=headers)

    def decode(self, raw: RawEvent):
        if raw.is_comment:
            return Comment(comment=raw.comment or "")
        return parse_json_event(raw, _EVENTS)

    def extract(self, event) -> Delta:
        if isinstance(event, ContentBlockDelta):
            return Delta(event.delta.text or "")
        if isinstance(event, Error):
            logger.error("Anthropic stream error: %s", event.error)
        elif isinstance(event, (Comment, Ping)):
            logger.debug("Anthropic %s", event.type)
        return Delta("")

    def is_final(self, event) -> bool:
        return isinstance(event, MessageStop)
