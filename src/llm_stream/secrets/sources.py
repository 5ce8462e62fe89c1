# src/llm_stream/secrets/sources.py

from __future__ import annotations
from typing import Protocol, Optional, Dict, Iterable, List, Union
import getpass
import logging
import os

try:
    import keyring as _keyring
except ImportError:
    _keyring = None  # optional

logger = logging.getLogger(__name__)


class CredentialSource(Protocol):
    def get(self, key: str) -> Optional[str]: ...


class EnvSource:
    def get(self, key: str) -> Optional[str]:
        # exact variable name first (e.g. ANTHROPIC_API_KEY), then <KEY>_API_KEY
        for name in (key, f"{key.upper().replace('-', '_')}_API_KEY"):
            val = os.getenv(name)
            if val and val.strip():
                return val.strip()
        return None


class KeyringSource:
    """System keyring; the service is the backend name (e.g. 'anthropic')."""

    def get(self, key: str) -> Optional[str]:
        if _keyring is None:
            return None
        try:
            cred = _keyring.get_credential(key, None)
        except Exception as e:  # backend-specific failures (locked keychain, no backend)
            logger.debug("keyring lookup for %s failed: %s", key, e)
            cred = None
        if cred is not None and getattr(cred, "password", None):
            return cred.password.strip()
        for account in ("api_key", "default", getpass.getuser()):
            try:
                val = _keyring.get_password(key, account)
            except Exception as e:
                logger.debug("keyring lookup for %s/%s failed: %s", key, account, e)
                continue
            if val:
                return val.strip()
        return None


_ALLOWED_METHODS = ("env", "keyring")


def _normalise_methods(method: Union[str, Iterable[str]]) -> List[str]:
    methods = [method] if isinstance(method, str) else list(method)
    norm: List[str] = []
    for m in methods:
        key = str(m).strip().lower()
        if key not in _ALLOWED_METHODS:
            raise ValueError(f"Unknown credential method '{m}'. Allowed: {list(_ALLOWED_METHODS)}")
        if key not in norm:
            norm.append(key)
    return norm


def build_credential_sources(method: Union[str, Iterable[str]]) -> List[CredentialSource]:
    sources: List[CredentialSource] = []
    for name in _normalise_methods(method):
        if name == "env":
            sources.append(EnvSource())
        elif name == "keyring":
            sources.append(KeyringSource())
    return sources


class CredentialResolver:
    """
    Resolve a backend's API key.
    - explicit: {provider: key} given on the command line or in config, wins outright
    - env_names: {provider: ENV_VAR} tried by the env source before the provider name
    - remaining methods are tried in order; the keyring is looked up by provider name
    """

    def __init__(
        self,
        method: Union[str, Iterable[str]] = ("env", "keyring"),
        env_names: Optional[Dict[str, str]] = None,
        explicit: Optional[Dict[str, str]] = None,
    ):
        self._sources = build_credential_sources(method)
        self._env_names = env_names or {}
        self._explicit = explicit or {}

    def secret(self, provider: str, name: str = "api_key") -> Optional[str]:
        if self._explicit.get(provider):
            return self._explicit[provider]
        for src in self._sources:
            keys = [provider]
            if isinstance(src, EnvSource) and self._env_names.get(provider):
                keys.insert(0, self._env_names[provider])
            for key in keys:
                val = src.get(key)
                if val:
                    logger.info("Using %s %s from %s", provider, name, type(src).__name__)
                    return val
        return None
