# src/llm_stream/config_loader.py

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
import yaml


class ConfigError(ValueError):
    pass


DEFAULT_CONFIG_DIR = Path("~/.config/llm-stream")
CONFIG_FILE_NAME = "config.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "api": "openai",
    "quiet": False,
    "language": "markdown",
    "theme": "ansi",
}

# key -> accepted types (bool is rejected where a number is expected)
_MODEL_KEYS: Dict[str, tuple] = {
    "api": (str,),
    "model": (str,),
    "system": (str,),
    "base_url": (str,),
    "env": (str,),
    "key": (str,),
    "version": (str,),
    "max_tokens": (int,),
    "min_tokens": (int,),
    "top_k": (int,),
    "temperature": (int, float),
    "top_p": (int, float),
}
_GLOBAL_KEYS: Dict[str, tuple] = {
    **_MODEL_KEYS,
    "quiet": (bool,),
    "language": (str,),
    "theme": (str,),
    "max_reconnects": (int,),
}
_TEMPLATE_KEYS: Dict[str, tuple] = {
    "description": (str,),
    "system": (str,),
    "default_vars": (dict,),
}

# settings key -> config/preset key, where they differ
_SETTING_TO_CONFIG = {
    "api_base_url": "base_url",
    "api_env": "env",
    "api_key": "key",
    "api_version": "version",
}


def _check(where: str, data: Dict[str, Any], schema: Dict[str, tuple]) -> None:
    for key, types in schema.items():
        if key not in data or data[key] is None:
            continue
        val = data[key]
        if (isinstance(val, bool) and bool not in types) or not isinstance(val, types):
            raise ConfigError(f"'{where}{key}' must be {' or '.join(t.__name__ for t in types)}")


def write_default_config(path: Path) -> Dict[str, Any]:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False), encoding="utf-8")
    return dict(DEFAULT_CONFIG)


def load_config(path: Path, *, create: bool = False) -> Dict[str, Any]:
    if not path or not path.exists():
        if create:
            write_default_config(path)
        else:
            raise FileNotFoundError(f"Config file not found: {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config must be a mapping: {path}")

    _check("", raw, _GLOBAL_KEYS)

    presets = raw.get("presets") or []
    if not isinstance(presets, list):
        raise ConfigError("'presets' must be a list")
    for i, p in enumerate(presets):
        if not isinstance(p, dict) or not isinstance(p.get("name"), str) or not isinstance(p.get("api"), str):
            raise ConfigError(f"presets[{i}] must be a mapping with string 'name' and 'api'")
        _check(f"presets[{i}].", p, _MODEL_KEYS)
        p["api"] = p["api"].lower()
    raw["presets"] = presets

    templates = raw.get("templates") or []
    if not isinstance(templates, list):
        raise ConfigError("'templates' must be a list")
    for i, t in enumerate(templates):
        if not isinstance(t, dict) or not isinstance(t.get("name"), str) or not isinstance(t.get("template"), str):
            raise ConfigError(f"templates[{i}] must be a mapping with string 'name' and 'template'")
        _check(f"templates[{i}].", t, _TEMPLATE_KEYS)
    raw["templates"] = templates

    # Normalise enumerations
    if isinstance(raw.get("api"), str):
        raw["api"] = raw["api"].lower()
    return raw


def resolve_settings(overrides: Dict[str, Any], cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge settings: command line / environment > named preset > config file.
    `overrides` uses the CLI names (api_key, api_base_url, ...); None means unset.
    """
    preset: Dict[str, Any] = {}
    preset_name = overrides.get("preset")
    if preset_name:
        match = next((p for p in cfg.get("presets") or [] if p["name"] == preset_name), None)
        if match is None:
            raise ConfigError(f"Unknown preset '{preset_name}'")
        preset = match

    keys = set(overrides) | set(_GLOBAL_KEYS) | set(_SETTING_TO_CONFIG)
    keys -= set(_SETTING_TO_CONFIG.values())
    merged: Dict[str, Any] = {}
    for key in keys:
        cfg_key = _SETTING_TO_CONFIG.get(key, key)
        value: Optional[Any] = overrides.get(key)
        if value is None:
            value = preset.get(cfg_key)
        if value is None:
            value = cfg.get(cfg_key)
        merged[key] = value

    if not merged.get("api"):
        raise ConfigError("No API specified (use --api, a preset, or 'api' in the config file)")
    merged["api"] = str(merged["api"]).lower()
    return merged
