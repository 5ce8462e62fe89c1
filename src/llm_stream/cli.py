from __future__ import annotations
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import typer
from rich.console import Console
from rich.markup import escape

from .bootstrap import build_app, conversations_dir, open_transcript
from .config_loader import DEFAULT_CONFIG_DIR, CONFIG_FILE_NAME, ConfigError
from .core.errors import ProviderError, RenderError
from .logging_config import level_from_verbosity, setup_logging
from .prompt_templates import parse_conversation, parse_vars
from .storage.transcript import list_transcripts

app = typer.Typer(add_completion=False)

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _fail(message: str) -> None:
    Console(stderr=True).print(f"[bold red]error:[/bold red] {escape(message)}", highlight=False, soft_wrap=True)
    raise typer.Exit(EXIT_FAILURE)


def read_input(prompt: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Returns (prompt, piped stdin). '-' makes stdin the prompt itself."""
    stdin = sys.stdin
    if prompt == "-":
        return stdin.read(), None
    piped = "" if stdin is None or stdin.isatty() else stdin.read()
    return prompt, (piped if piped.strip() else None)


async def _stream_reply(ctx: Dict[str, Any], text: str) -> str:
    async with ctx["transport"]:
        return await ctx["session"].run_turn(text)


@app.command()
def main(
    prompt: Optional[str] = typer.Argument(None, help="Prompt text, or '-' to read stdin."),
    api: Optional[str] = typer.Option(None, "--api", "-a", help="Backend: anthropic, openai, mistral, mistral-fim, google, ollama."),
    model: Optional[str] = typer.Option(None, "--model", "-m"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens"),
    min_tokens: Optional[int] = typer.Option(None, "--min-tokens"),
    temperature: Optional[float] = typer.Option(None, "--temperature"),
    top_p: Optional[float] = typer.Option(None, "--top-p"),
    top_k: Optional[int] = typer.Option(None, "--top-k"),
    system: Optional[str] = typer.Option(None, "--system", help="System prompt."),
    suffix: Optional[str] = typer.Option(None, "--suffix", help="Text after the completion (fill-in-the-middle)."),
    template: Optional[str] = typer.Option(None, "--template", "-t", help="Named prompt template from the config file."),
    vars_: str = typer.Option("{}", "--vars", help="Template variables as a JSON object."),
    conversation: str = typer.Option(
        "[]", "--conversation", help="JSON list of {role, content} messages sent before the prompt."
    ),
    api_key: Optional[str] = typer.Option(None, "--api-key"),
    api_env: Optional[str] = typer.Option(None, "--api-env", help="Environment variable holding the API key."),
    api_version: Optional[str] = typer.Option(None, "--api-version"),
    api_base_url: Optional[str] = typer.Option(None, "--api-base-url"),
    preset: Optional[str] = typer.Option(None, "--preset", "-p"),
    config_dir: Path = typer.Option(DEFAULT_CONFIG_DIR, "--config-dir"),
    config_file: Optional[Path] = typer.Option(None, "--config-file"),
    quiet: bool = typer.Option(False, "--quiet", help="No spinner."),
    language: Optional[str] = typer.Option(None, "--language", help="Highlighting language (default markdown)."),
    theme: Optional[str] = typer.Option(None, "--theme", help="Highlighting theme (default ansi)."),
    no_color: bool = typer.Option(False, "--no-color"),
    from_id: Optional[str] = typer.Option(None, "--from", help="Continue a cached conversation."),
    from_last: bool = typer.Option(False, "--from-last", help="Continue the most recent conversation."),
    fork: bool = typer.Option(False, "--fork", help="Continue in a new conversation."),
    title: Optional[str] = typer.Option(None, "--title"),
    description: Optional[str] = typer.Option(None, "--description"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Do not write the conversation to disk."),
    list_: bool = typer.Option(False, "--list", help="List cached conversations."),
    show: bool = typer.Option(False, "--show", help="Show the conversation selected by --from/--from-last."),
    print_conversation: bool = typer.Option(False, "--print-conversation"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build the request but do not send it."),
    show_dir: bool = typer.Option(False, "--dir", help="Print the config directory."),
    show_config: bool = typer.Option(False, "--config", help="Print the config file path."),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write log records to this file."),
):
    """Stream a completion from an LLM API to the terminal."""
    setup_logging(level_from_verbosity(verbose), log_file.expanduser() if log_file else None)
    config_dir = config_dir.expanduser()

    if show_dir:
        typer.echo(str(config_dir))
        return
    if show_config:
        typer.echo(str((config_file or config_dir / CONFIG_FILE_NAME).expanduser()))
        return
    if list_:
        for header in list_transcripts(conversations_dir(config_dir)):
            label = header.get("title") or ""
            typer.echo(f"{header['id']}\t{header.get('api', '')}\t{header.get('model', '')}\t{label}".rstrip())
        return

    try:
        if show:
            transcript = open_transcript(
                {}, conversations_dir(config_dir), from_id=from_id, from_last=from_last or not from_id
            )
            for m in transcript.messages:
                typer.echo(f"{m['role']}: {m['content']}")
            return

        prompt_text, stdin_text = read_input(prompt)
        template_vars = parse_vars(vars_)
        history = parse_conversation(conversation)
        overrides = {
            "api": api,
            "model": model,
            "max_tokens": max_tokens,
            "min_tokens": min_tokens,
            "temperature": temperature,
            "top_p": top_p,
            "top_k": top_k,
            "system": system,
            "suffix": suffix,
            "api_key": api_key,
            "api_env": api_env,
            "api_version": api_version,
            "api_base_url": api_base_url,
            "preset": preset,
            "quiet": quiet or None,
            "language": language,
            "theme": theme,
            "title": title,
            "description": description,
        }
        ctx = build_app(
            overrides,
            config_dir=config_dir,
            config_file=config_file,
            from_id=from_id,
            from_last=from_last,
            fork=fork,
            no_cache=no_cache or dry_run or print_conversation,
            no_color=no_color,
            prompt=prompt_text,
            stdin=stdin_text,
            template=template,
            template_vars=template_vars,
            conversation=history,
        )

        text = ctx["prompt"]
        messages = ctx["transcript"].messages
        if text:
            messages.append({"role": "user", "content": text})
        if print_conversation:
            typer.echo(json.dumps(messages, indent=2, ensure_ascii=False))
            return
        if dry_run:
            request = ctx["backend"].build_request(messages)
            typer.echo(json.dumps({"url": request.url, "params": request.params, "body": request.body},
                                  indent=2, ensure_ascii=False))
            return
        if not text:
            raise ConfigError("No prompt given (pass PROMPT, '-' or pipe text on stdin)")

        asyncio.run(_stream_reply(ctx, text))
        if sys.stdout.isatty():
            typer.echo("")
    except KeyboardInterrupt:
        raise typer.Exit(EXIT_INTERRUPTED)
    except (ProviderError, ConfigError, RenderError) as e:
        _fail(str(e))


if __name__ == "__main__":
    app()
