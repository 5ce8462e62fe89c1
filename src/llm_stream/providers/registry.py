from __future__ import annotations
from typing import Dict, List, Type, Callable
from importlib import import_module

_BUILTIN_MODULES = (
    "llm_stream.providers.anthropic",
    "llm_stream.providers.openai",
    "llm_stream.providers.google",
    "llm_stream.providers.ollama",
)


class ProviderRegistry:
    _classes: Dict[str, Type] = {}
    _aliases: Dict[str, str] = {}

    @classmethod
    def register(cls, name: str, *aliases: str) -> Callable[[Type], Type]:
        name = name.lower()
        def deco(klass: Type) -> Type:
            cls._classes[name] = klass
            for alias in aliases:
                cls._aliases[alias.lower()] = name
            return klass
        return deco

    @classmethod
    def canonical(cls, name: str) -> str:
        key = name.lower().replace("_", "-")
        return cls._aliases.get(key, key)

    @classmethod
    def get(cls, name: str) -> Type:
        key = cls.canonical(name)
        if key not in cls._classes:
            raise KeyError(f"Provider '{name}' not registered")
        return cls._classes[key]

    @classmethod
    def names(cls) -> List[str]:
        return sorted(cls._classes)

    @classmethod
    def ensure_imports(cls) -> None:
        """
        Import built-in adapters so their @register decorators run.
        Call once at bootstrap before get().
        """
        for module in _BUILTIN_MODULES:
            import_module(module)
