# src/llm_stream/providers/base.py
from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import TypeAdapter, ValidationError

from llm_stream.core.errors import DecodeError, ProviderClientError
from llm_stream.transport.framing import RawEvent

_PAYLOAD_PREVIEW = 200


@dataclass
class ModelOptions:
    """Per-request knobs shared by every backend. None means "let the API decide"."""
    model: Optional[str] = None
    system: Optional[str] = None
    max_tokens: Optional[int] = None
    min_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    suffix: Optional[str] = None
    api_version: Optional[str] = None
    base_url: Optional[str] = None


def compact(d: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unset (None) fields so they are omitted from the request body."""
    return {k: v for k, v in d.items() if v is not None}


def join_url(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + path


def parse_json_event(raw: RawEvent, adapter: TypeAdapter) -> Any:
    """Validate one framed payload against a pydantic shape, or raise DecodeError."""
    try:
        return adapter.validate_python(json.loads(raw.data))
    except (json.JSONDecodeError, ValidationError) as e:
        preview = raw.data[:_PAYLOAD_PREVIEW]
        raise DecodeError(f"{type(e).__name__} for payload {preview!r}") from e


def require_key(secrets, provider: str) -> str:
    api_key = secrets.secret(provider, "api_key") if secrets is not None else None
    if not api_key:
        raise ProviderClientError(f"No API key for '{provider}'")
    return api_key
