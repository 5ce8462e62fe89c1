from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

import httpx
from dotenv import load_dotenv
from rich.console import Console

from .config_loader import CONFIG_FILE_NAME, ConfigError, load_config, resolve_settings
from .core.chat_session import ChatSession
from .prompt_templates import join_input, render_prompt
from .providers.base import ModelOptions
from .providers.registry import ProviderRegistry
from .secrets.sources import CredentialResolver
from .storage.transcript import Transcript, last_transcript_id
from .transport.http import StreamingTransport
from .ui.highlighter import SyntaxHighlighter
from .ui.renderer import StreamRenderer
from .ui.spinner import Spinner

logger = logging.getLogger(__name__)

CONVERSATIONS_DIR = "conversations"


def conversations_dir(config_dir: Path) -> Path:
    return config_dir / CONVERSATIONS_DIR


def _copy_into_memory(source: Transcript, header_meta: Dict[str, Any]) -> Transcript:
    child = Transcript(root_dir=None, header_meta=header_meta)
    for m in source.messages:
        child.append_message(m["role"], m["content"])
    return child


def open_transcript(
    settings: Dict[str, Any],
    root_dir: Path,
    *,
    from_id: Optional[str] = None,
    from_last: bool = False,
    fork: bool = False,
    no_cache: bool = False,
) -> Transcript:
    """
    New conversation, or resume one from the cache (--from / --from-last).
    --fork starts a child conversation; --no-cache never touches the disk.
    """
    meta = {
        "api": settings.get("api"),
        "model": settings.get("model"),
        "title": settings.get("title"),
        "description": settings.get("description"),
    }
    meta = {k: v for k, v in meta.items() if v is not None}

    if from_last and not from_id:
        from_id = last_transcript_id(root_dir)
        if from_id is None:
            raise ConfigError(f"No cached conversation in {root_dir}")

    if not from_id:
        return Transcript(root_dir=None if no_cache else root_dir, header_meta=meta)

    if not (root_dir / f"{from_id}.jsonl").exists():
        raise ConfigError(f"Unknown conversation '{from_id}'")
    source = Transcript(conversation_id=from_id, root_dir=root_dir)
    if no_cache:
        return _copy_into_memory(source, {**meta, "parent": from_id})
    if fork:
        return source.fork(header_meta=meta)
    return source


def build_app(
    overrides: Dict[str, Any],
    *,
    config_dir: Path,
    config_file: Optional[Path] = None,
    from_id: Optional[str] = None,
    from_last: bool = False,
    fork: bool = False,
    no_cache: bool = False,
    no_color: bool = False,
    prompt: Optional[str] = None,
    stdin: Optional[str] = None,
    template: Optional[str] = None,
    template_vars: Optional[Dict[str, Any]] = None,
    conversation: Optional[List[Dict[str, str]]] = None,
    out: Optional[TextIO] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """
    Composition root: load YAML, resolve settings and credentials, build the
    backend, transport, transcript and chat session. A --template renders the
    prompt (and may replace the system prompt) before the backend is built.
    Returns: dict with cfg, settings, paths, prompt, backend, transport, transcript, session.
    """
    load_dotenv()
    config_dir = config_dir.expanduser()
    config_path = (config_file or config_dir / CONFIG_FILE_NAME).expanduser()
    cfg = load_config(config_path, create=True)
    settings = resolve_settings(overrides, cfg)

    # ----- Prompt -----
    if template:
        text, system = render_prompt(
            cfg.get("templates"),
            template,
            prompt=prompt or "",
            stdin=stdin or "",
            system=settings.get("system") or "",
            suffix=settings.get("suffix") or "",
            language=settings.get("language"),
            variables=template_vars,
        )
        if system is not None:
            settings["system"] = system
    else:
        text = join_input(prompt, stdin)

    # ----- Backend -----
    ProviderRegistry.ensure_imports()
    try:
        Adapter = ProviderRegistry.get(settings["api"])
    except KeyError:
        raise ConfigError(
            f"Unknown API '{settings['api']}'. Available: {', '.join(ProviderRegistry.names())}"
        ) from None
    api = Adapter.name

    options = ModelOptions(
        model=settings.get("model"),
        system=settings.get("system"),
        max_tokens=settings.get("max_tokens"),
        min_tokens=settings.get("min_tokens"),
        temperature=settings.get("temperature"),
        top_p=settings.get("top_p"),
        top_k=settings.get("top_k"),
        suffix=settings.get("suffix"),
        api_version=settings.get("api_version"),
        base_url=settings.get("api_base_url"),
    )
    env_name = settings.get("api_env") or Adapter.default_env
    secrets = CredentialResolver(
        env_names={api: env_name} if env_name else None,
        explicit={api: settings["api_key"]} if settings.get("api_key") else None,
    )
    backend = Adapter.create(options=options, secrets=secrets)
    settings["api"] = api
    settings["model"] = getattr(backend, "model", settings.get("model"))

    policy = Adapter.reconnect_policy.with_max_attempts(settings.get("max_reconnects"))
    transport = StreamingTransport(policy, client=client)

    # ----- Transcript -----
    tdir = conversations_dir(config_dir)
    transcript = open_transcript(
        settings, tdir, from_id=from_id, from_last=from_last, fork=fork, no_cache=no_cache
    )
    for m in conversation or []:
        transcript.append_message(m["role"], m["content"])

    # ----- Rendering -----
    highlighter = SyntaxHighlighter(
        settings.get("language") or "markdown",
        settings.get("theme") or "ansi",
        color=not no_color,
    )

    def new_renderer() -> StreamRenderer:
        spinner = None
        if not settings.get("quiet"):
            spinner = Spinner(Console(file=out) if out is not None else Console())
        return StreamRenderer(out, highlighter=highlighter, spinner=spinner)

    session = ChatSession(backend, transcript, transport, new_renderer)
    logger.info("Using %s (%s), conversation %s", api, settings["model"], transcript.conversation_id)

    return {
        "cfg": cfg,
        "settings": settings,
        "paths": {"config_dir": config_dir, "config_file": config_path, "conversations_dir": tdir},
        "prompt": text,
        "backend": backend,
        "transport": transport,
        "transcript": transcript,
        "session": session,
    }
