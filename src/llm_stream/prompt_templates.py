# src/llm_stream/prompt_templates.py
"""
Prompt composition: named Jinja2 templates from the config file, the
--vars / --conversation JSON inputs, and the plain stdin + prompt join.
"""

from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Literal, Optional, Tuple

from jinja2 import Environment, StrictUndefined, TemplateError, select_autoescape
from pydantic import BaseModel, TypeAdapter, ValidationError

from .config_loader import ConfigError

logger = logging.getLogger(__name__)


class TemplateNotFound(ConfigError):
    pass


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


_CONVERSATION = TypeAdapter(List[ConversationMessage])

# Prompts are plain text: nothing is HTML-escaped, and a missing variable is an error.
_env = Environment(
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=select_autoescape(enabled_extensions=(), default_for_string=False),
)


def merge_vars(base: Any, extra: Any) -> Any:
    """Merge `extra` into `base` recursively. A None value in `extra` removes the key."""
    if not isinstance(base, dict) or not isinstance(extra, dict):
        return extra
    out = dict(base)
    for key, value in extra.items():
        if value is None:
            out.pop(key, None)
        else:
            out[key] = merge_vars(out.get(key), value)
    return out


def parse_vars(text: Optional[str]) -> Dict[str, Any]:
    if not text:
        return {}
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"--vars is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise ConfigError("--vars must be a JSON object")
    return value


def parse_conversation(text: Optional[str]) -> List[Dict[str, str]]:
    """--conversation: a JSON list of {role, content} with role user, assistant or system."""
    if not text:
        return []
    try:
        messages = _CONVERSATION.validate_json(text)
    except ValidationError as e:
        raise ConfigError(f"Invalid --conversation: {e.errors()[0]['msg']}") from e
    return [m.model_dump() for m in messages]


def join_input(prompt: Optional[str], stdin: Optional[str]) -> Optional[str]:
    """Piped text goes first, then the prompt from the command line."""
    if stdin and stdin.strip():
        return f"{stdin}\n{prompt}" if prompt else stdin
    return prompt


def find_template(templates: Optional[List[Dict[str, Any]]], name: str) -> Dict[str, Any]:
    for t in templates or []:
        if t.get("name") == name:
            return t
    raise TemplateNotFound(f"Unknown template '{name}'")


def _render(source: str, context: Dict[str, Any], what: str) -> str:
    try:
        return _env.from_string(source).render(context)
    except TemplateError as e:
        raise ConfigError(f"Cannot render {what}: {e}") from e


def render_prompt(
    templates: Optional[List[Dict[str, Any]]],
    name: str,
    *,
    prompt: str = "",
    stdin: str = "",
    system: str = "",
    suffix: str = "",
    language: Optional[str] = None,
    variables: Optional[Dict[str, Any]] = None,
) -> Tuple[str, Optional[str]]:
    """
    Render template `name`. The context holds prompt, system, stdin, suffix and
    language, overlaid with the template's default_vars merged with `variables`.
    Returns (prompt, system); system is None unless the template defines one.
    """
    t = find_template(templates, name)
    merged = merge_vars(t.get("default_vars") or {}, variables or {})
    context = merge_vars(
        {"prompt": prompt, "system": system, "stdin": stdin, "suffix": suffix, "language": language},
        merged,
    )
    logger.debug("Template %s context keys: %s", name, sorted(context))

    rendered_system = None
    if t.get("system") is not None:
        rendered_system = _render(t["system"], context, f"system of template '{name}'")
    return _render(t["template"], context, f"template '{name}'"), rendered_system
