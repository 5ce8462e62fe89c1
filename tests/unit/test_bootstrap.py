# tests/unit/test_bootstrap.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest

# Ensure "src" is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from llm_stream.bootstrap import build_app, open_transcript
from llm_stream.config_loader import ConfigError
from llm_stream.core.errors import ProviderClientError
from llm_stream.providers.anthropic import AnthropicAdapter
from llm_stream.providers.ollama import OllamaAdapter
from llm_stream.storage.transcript import Transcript


@pytest.fixture(autouse=True)
def no_keyring(monkeypatch):
    import llm_stream.secrets.sources as src
    monkeypatch.setattr(src, "_keyring", None, raising=True)


def test_build_app_creates_config_and_wires_backend(tmp_path: Path):
    ctx = build_app({"api": "claude", "api_key": "sk-cli", "model": "claude-x"}, config_dir=tmp_path)

    assert (tmp_path / "config.yaml").exists()
    backend = ctx["backend"]
    assert isinstance(backend, AnthropicAdapter)
    assert backend.api_key == "sk-cli" and backend.model == "claude-x"
    assert ctx["settings"]["api"] == "anthropic"
    assert ctx["paths"]["conversations_dir"] == tmp_path / "conversations"
    assert ctx["transcript"].path.parent == tmp_path / "conversations"
    assert ctx["transport"].policy.max_attempts is None


def test_config_file_supplies_api_and_reconnect_cap(tmp_path: Path):
    cfg = tmp_path / "custom.yaml"
    cfg.write_text("api: ollama\nmax_reconnects: 4\nmodel: qwen2\n", encoding="utf-8")
    ctx = build_app({}, config_dir=tmp_path, config_file=cfg)
    assert isinstance(ctx["backend"], OllamaAdapter)
    assert ctx["backend"].model == "qwen2"
    assert ctx["transport"].policy.max_attempts == 4
    assert ctx["transcript"].header["model"] == "qwen2"


def test_api_env_names_the_key_variable(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("WORK_OPENAI", "sk-work")
    ctx = build_app({"api": "openai", "api_env": "WORK_OPENAI"}, config_dir=tmp_path)
    assert ctx["backend"].api_key == "sk-work"


def test_unknown_api_and_missing_key(tmp_path: Path, monkeypatch):
    with pytest.raises(ConfigError):
        build_app({"api": "nope"}, config_dir=tmp_path)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    with pytest.raises(ProviderClientError):
        build_app({"api": "google"}, config_dir=tmp_path)


def test_no_cache_keeps_transcript_in_memory(tmp_path: Path):
    ctx = build_app({"api": "ollama"}, config_dir=tmp_path, no_cache=True)
    assert ctx["transcript"].path is None


def test_open_transcript_resume_fork_and_last(tmp_path: Path):
    old = Transcript(conversation_id="c1", root_dir=tmp_path)
    old.append_message("user", "q")

    with pytest.raises(ConfigError):
        open_transcript({}, tmp_path, from_id="missing")
    with pytest.raises(ConfigError):
        open_transcript({}, tmp_path / "empty", from_last=True)

    resumed = open_transcript({}, tmp_path, from_last=True)
    assert resumed.conversation_id == "c1" and resumed.messages == old.messages

    forked = open_transcript({"title": "branch"}, tmp_path, from_id="c1", fork=True)
    assert forked.conversation_id != "c1"
    assert forked.header["parent"] == "c1" and forked.header["title"] == "branch"

    memory = open_transcript({}, tmp_path, from_id="c1", no_cache=True)
    memory.append_message("user", "not saved")
    assert memory.path is None
    assert Transcript(conversation_id="c1", root_dir=tmp_path).messages == old.messages
