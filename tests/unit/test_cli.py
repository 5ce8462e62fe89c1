# tests/unit/test_cli.py

from __future__ import annotations
import json
import logging
import sys
from pathlib import Path
import httpx
import pytest
from typer.testing import CliRunner

# Ensure "src" is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

import llm_stream.cli as cli  # Typer app
from llm_stream.logging_config import HANDLER_NAME
from llm_stream.storage.transcript import list_transcripts

runner = CliRunner()

OPENAI_SSE = (
    'data: {"choices":[{"index":0,"delta":{"role":"assistant"}}]}\n\n'
    'data: {"choices":[{"index":0,"delta":{"content":"Hello"}}]}\n\n'
    ": keep-alive\n\n"
    'data: {"choices":[{"index":0,"delta":{"content":" world"}}]}\n\n'
    "data: [DONE]\n\n"
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    import llm_stream.secrets.sources as src
    monkeypatch.setattr(src, "_keyring", None, raising=True)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("LLM_STREAM_LOG", raising=False)
    yield
    # the CLI's handlers point at the runner's (now closed) stream or a tmp file
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()


def serve(monkeypatch, handler):
    """Route the CLI's HTTP client through a mock transport."""
    real_build_app = cli.build_app
    requests = []

    def recording(request):
        requests.append(request)
        return handler(request)

    def build_app(overrides, **kwargs):
        kwargs["client"] = httpx.AsyncClient(transport=httpx.MockTransport(recording))
        return real_build_app(overrides, **kwargs)

    monkeypatch.setattr(cli, "build_app", build_app)
    return requests


def test_dir_and_config_paths(tmp_path: Path):
    result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "--dir"])
    assert result.exit_code == 0
    assert result.output.strip() == str(tmp_path)
    result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "--config"])
    assert result.output.strip() == str(tmp_path / "config.yaml")


def test_dry_run_prints_request_without_sending(tmp_path: Path, monkeypatch):
    requests = serve(monkeypatch, lambda request: httpx.Response(500))
    result = runner.invoke(cli.app, [
        "--config-dir", str(tmp_path), "-a", "anthropic", "--api-key", "k",
        "--system", "terse", "--max-tokens", "64", "--dry-run", "hi",
    ])
    assert result.exit_code == 0, result.output
    shown = json.loads(result.output)
    assert shown["url"] == "https://api.anthropic.com/v1/messages"
    assert shown["body"]["messages"] == [{"role": "user", "content": "hi"}]
    assert shown["body"]["system"] == "terse" and shown["body"]["max_tokens"] == 64
    assert requests == []
    assert list_transcripts(tmp_path / "conversations") == []


def test_print_conversation_joins_piped_stdin_and_prompt(tmp_path: Path):
    result = runner.invoke(
        cli.app,
        ["--config-dir", str(tmp_path), "-a", "ollama", "--print-conversation", "summarise"],
        input="some log\n",
    )
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == [{"role": "user", "content": "some log\n\nsummarise"}]


def test_streams_reply_to_stdout_and_caches_it(tmp_path: Path, monkeypatch):
    requests = serve(monkeypatch, lambda request: httpx.Response(200, text=OPENAI_SSE))
    result = runner.invoke(cli.app, [
        "--config-dir", str(tmp_path), "-a", "openai", "--api-key", "sk", "--title", "greeting", "Say hi",
    ])
    assert result.exit_code == 0, result.output
    assert result.stdout == "Hello world"
    assert requests[0].headers["authorization"] == "Bearer sk"

    headers = list_transcripts(tmp_path / "conversations")
    assert len(headers) == 1 and headers[0]["title"] == "greeting" and headers[0]["api"] == "openai"

    # --from-last continues the same conversation
    runner.invoke(cli.app, ["--config-dir", str(tmp_path), "-a", "openai", "--api-key", "sk", "--from-last", "More"])
    sent = json.loads(requests[1].content)
    assert [m["content"] for m in sent["messages"]] == ["Say hi", "Hello world", "More"]

    listed = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "--list"])
    assert headers[0]["id"] in listed.output

    shown = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "--show"])
    assert "assistant: Hello world" in shown.output


def test_prompt_dash_reads_stdin(tmp_path: Path, monkeypatch):
    requests = serve(monkeypatch, lambda request: httpx.Response(200, text=OPENAI_SSE))
    result = runner.invoke(
        cli.app, ["--config-dir", str(tmp_path), "-a", "openai", "--api-key", "sk", "--no-cache", "-"],
        input="from stdin",
    )
    assert result.exit_code == 0, result.output
    assert json.loads(requests[0].content)["messages"][-1]["content"] == "from stdin"
    assert not (tmp_path / "conversations").exists() or list_transcripts(tmp_path / "conversations") == []


def test_http_error_prints_one_line_and_exits_1(tmp_path: Path, monkeypatch):
    serve(monkeypatch, lambda request: httpx.Response(401, text="invalid x-api-key"))
    result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "-a", "openai", "--api-key", "bad", "hi"])
    assert result.exit_code == 1
    assert "HTTP 401" in result.output and "invalid x-api-key" in result.output


def test_missing_key_and_missing_prompt_exit_1(tmp_path: Path):
    result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "-a", "openai", "hi"])
    assert result.exit_code == 1
    assert "No API key" in result.output

    result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "-a", "ollama"])
    assert result.exit_code == 1
    assert "No prompt" in result.output


TEMPLATE_CONFIG = """\
api: ollama
templates:
  - name: explain
    description: Explain piped code
    template: "Explain this {{ language }} to a {{ level }}:\\n{{ stdin }}"
    system: "Answer in {{ lang }}."
    default_vars: {level: beginner, lang: English}
"""


def test_template_renders_prompt_and_system(tmp_path: Path):
    (tmp_path / "config.yaml").write_text(TEMPLATE_CONFIG, encoding="utf-8")
    result = runner.invoke(
        cli.app,
        ["--config-dir", str(tmp_path), "-t", "explain", "--vars", '{"level": "expert"}',
         "--language", "rust", "--system", "ignored", "--dry-run"],
        input="fn main() {}\n",
    )
    assert result.exit_code == 0, result.output
    body = json.loads(result.output)["body"]
    assert body["messages"] == [
        {"role": "system", "content": "Answer in English."},
        {"role": "user", "content": "Explain this rust to a expert:\nfn main() {}\n"},
    ]


def test_unknown_template_and_bad_vars_exit_1(tmp_path: Path):
    (tmp_path / "config.yaml").write_text(TEMPLATE_CONFIG, encoding="utf-8")
    result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "-t", "nope", "--dry-run", "hi"])
    assert result.exit_code == 1
    assert "Unknown template 'nope'" in result.output

    result = runner.invoke(cli.app, ["--config-dir", str(tmp_path), "-t", "explain", "--vars", "[1]", "--dry-run"])
    assert result.exit_code == 1
    assert "--vars" in result.output


def test_conversation_goes_before_the_prompt(tmp_path: Path):
    history = [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "2+2?"},
        {"role": "assistant", "content": "4"},
    ]
    result = runner.invoke(cli.app, [
        "--config-dir", str(tmp_path), "-a", "ollama",
        "--conversation", json.dumps(history), "--print-conversation", "and 3+3?",
    ])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == history + [{"role": "user", "content": "and 3+3?"}]

    result = runner.invoke(cli.app, [
        "--config-dir", str(tmp_path), "-a", "ollama", "--conversation", '[{"role": "bot"}]', "--dry-run", "x",
    ])
    assert result.exit_code == 1
    assert "--conversation" in result.output


def test_log_file_receives_records(tmp_path: Path):
    log_path = tmp_path / "logs" / "llm-stream.log"
    result = runner.invoke(cli.app, [
        "--config-dir", str(tmp_path), "-a", "ollama", "-v", "--log-file", str(log_path), "--dry-run", "hi",
    ])
    assert result.exit_code == 0, result.output
    logged = log_path.read_text(encoding="utf-8")
    assert "INFO" in logged and "Using ollama" in logged
