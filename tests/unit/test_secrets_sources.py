# tests/unit/test_secrets_sources.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from llm_stream.secrets.sources import (
    CredentialResolver,
    build_credential_sources,
)


def test_env_name_then_provider_derived_name(monkeypatch):
    monkeypatch.setenv("MY_CUSTOM_KEY", "sk-custom")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    r1 = CredentialResolver(method="env", env_names={"openai": "MY_CUSTOM_KEY"})
    assert r1.secret("openai") == "sk-custom"

    # provider name -> derived env var
    r2 = CredentialResolver(method=["env"])
    assert r2.secret("openai") == "sk-env"

    monkeypatch.setenv("MISTRAL_FIM_API_KEY", "sk-fim")
    assert r2.secret("mistral-fim") == "sk-fim"


def test_explicit_key_wins(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    r = CredentialResolver(explicit={"openai": "sk-cli"})
    assert r.secret("openai") == "sk-cli"


def test_nothing_found_returns_none(monkeypatch):
    monkeypatch.delenv("NOBODY_API_KEY", raising=False)
    import llm_stream.secrets.sources as src
    monkeypatch.setattr(src, "_keyring", None, raising=True)
    assert CredentialResolver().secret("nobody") is None


def test_unknown_method_raises():
    with pytest.raises(ValueError):
        build_credential_sources("nope")


def test_keyring_then_env(monkeypatch):
    # Prepare env fallback
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")

    # Fake keyring that returns a value first
    class FakeKeyring:
        def get_credential(self, service, _):
            class Cred:
                password = "sk-from-keyring"
            return Cred()
        def get_password(self, *args, **kwargs):
            return None

    import llm_stream.secrets.sources as src
    monkeypatch.setattr(src, "_keyring", FakeKeyring(), raising=True)

    r = CredentialResolver(method=["keyring", "env"])
    assert r.secret("openai") == "sk-from-keyring"

    # Now make keyring miss (and fail) -> env wins
    class KR2:
        def get_credential(self, *_): raise RuntimeError("locked")
        def get_password(self, *_): return None
    monkeypatch.setattr(src, "_keyring", KR2(), raising=True)

    r2 = CredentialResolver(method=["keyring", "env"])
    assert r2.secret("openai") == "sk-from-env"
