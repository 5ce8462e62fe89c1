# src/llm_stream/providers/openai.py
"""
Chat-completion style backends: OpenAI, Mistral chat and Mistral FIM.

All three stream SSE `data:` lines holding one chat.completion.chunk each and
terminate with the literal `data: [DONE]`.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, TypeAdapter

from llm_stream.core.stream import Delta
from llm_stream.providers.base import ModelOptions, compact, join_url, parse_json_event, require_key
from llm_stream.providers.registry import ProviderRegistry
from llm_stream.resilience.reconnect import DEFAULT_RECONNECT_POLICY
from llm_stream.transport.framing import RawEvent
from llm_stream.transport.http import RequestSpec

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class ChoiceDelta(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None


class Choice(BaseModel):
    index: int = 0
    delta: ChoiceDelta = Field(default_factory=ChoiceDelta)
    finish_reason: Optional[str] = None


class ChatCompletionChunk(BaseModel):
    id: str = ""
    object: str = ""
    model: str = ""
    choices: List[Choice] = Field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None


class Done(BaseModel):
    """The `[DONE]` terminator."""


class Comment(BaseModel):
    comment: str = ""


_CHUNK: TypeAdapter = TypeAdapter(ChatCompletionChunk)


class ChatCompletionsAdapter:
    """Shared decode/extract for every chunk-per-event backend."""
    name = "openai"
    framing = "sse"
    reconnect_policy = DEFAULT_RECONNECT_POLICY
    default_url = "https://api.openai.com/v1"
    default_model = "gpt-4o"
    default_env = "OPENAI_API_KEY"
    path = "/chat/completions"

    def __init__(self, api_key: str, options: Optional[ModelOptions] = None):
        self.api_key = api_key
        self.options = options or ModelOptions()
        self.model = self.options.model or self.default_model

    @classmethod
    def create(cls, *, options: ModelOptions, secrets) -> "ChatCompletionsAdapter":
        return cls(api_key=require_key(secrets, cls.name), options=options)

    # ----- request -----

    def _headers(self) -> Dict[str, str]:
        return {
            "authorization": f"Bearer {self.api_key}",
            "content-type": "application/json",
            "accept": "text/event-stream",
        }

    def _chat_messages(self, messages: List[Dict[str, Any]]) -> List[Dict[str, str]]:
        out = [{"role": m["role"], "content": m["content"]} for m in messages]
        if self.options.system:
            out.insert(0, {"role": "system", "content": self.options.system})
        return out

    def _body(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        opts = self.options
        return compact({
            "model": self.model,
            "messages": self._chat_messages(messages),
            "stream": True,
            "temperature": opts.temperature,
            "top_p": opts.top_p,
            "max_tokens": opts.max_tokens,
        })

    def build_request(self, messages: List[Dict[str, Any]]) -> RequestSpec:
        url = join_url(self.options.base_url or self.default_url, self.path)
        return RequestSpec(url=url, body=self._body(messages), headers=self._headers())

    # ----- events -----

    def decode(self, raw: RawEvent):
        if raw.is_comment:
            return Comment(comment=raw.comment or "")
        if raw.data.strip() == DONE_SENTINEL:
            return Done()
        return parse_json_event(raw, _CHUNK)

    def extract(self, event) -> Delta:
        if isinstance(event, ChatCompletionChunk) and event.choices:
            return Delta(event.choices[0].delta.content or "")
        if isinstance(event, Comment):
            logger.debug("%s comment: %s", self.name, event.comment)
        return Delta("")

    def is_final(self, event) -> bool:
        return isinstance(event, Done)


@ProviderRegistry.register("openai", "open-ai")
class OpenAIAdapter(ChatCompletionsAdapter):
    pass


@ProviderRegistry.register("mistral")
class MistralAdapter(ChatCompletionsAdapter):
    name = "mistral"
    default_url = "https://api.mistral.ai/v1"
    default_model = "mistral-small-latest"
    default_env = "MISTRAL_API_KEY"

    def _body(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        body = super()._body(messages)
        if self.options.min_tokens is not None:
            body["min_tokens"] = self.options.min_tokens
        return body


@ProviderRegistry.register("mistral-fim", "mistralfim")
class MistralFIMAdapter(ChatCompletionsAdapter):
    """Fill-in-the-middle: the user turns become the prompt, `suffix` closes the gap."""
    name = "mistral-fim"
    default_url = "https://api.mistral.ai/v1"
    default_model = "codestral-2405"
    default_env = "MISTRAL_API_KEY"
    path = "/fim/completions"

    def _body(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        opts = self.options
        prompt = "\n".join(m["content"] for m in messages if m["role"] == "user")
        return compact({
            "model": self.model,
            "prompt": prompt,
            "suffix": opts.suffix,
            "stream": True,
            "temperature": opts.temperature,
            "top_p": opts.top_p,
            "max_tokens": opts.max_tokens,
            "min_tokens": opts.min_tokens,
        })
