from __future__ import annotations

import importlib
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from llm_engine.core.interfaces import Adapter, Capabilities
from llm_engine.core.providers.base import BaseAdapter
from llm_engine.service.errors import LLMConfigurationError, UnknownProviderError

AdapterTarget = Union[str, Callable[[], Adapter]]

_PROVIDERS = "llm_engine.core.providers"

DEFAULT_ADAPTERS: Dict[str, str] = {
    "openai": f"{_PROVIDERS}.openai:OpenAIAdapter",
    "azure": f"{_PROVIDERS}.azure:AzureOpenAIAdapter",
    "openrouter": f"{_PROVIDERS}.openrouter:OpenRouterAdapter",
    "xai": f"{_PROVIDERS}.xai:XAIAdapter",
    "groq": f"{_PROVIDERS}.presets:GroqAdapter",
    "deepseek": f"{_PROVIDERS}.presets:DeepSeekAdapter",
    "mistral": f"{_PROVIDERS}.presets:MistralAdapter",
    "together": f"{_PROVIDERS}.presets:TogetherAdapter",
    "lmstudio": f"{_PROVIDERS}.presets:LMStudioAdapter",
    "ollama": f"{_PROVIDERS}.ollama:OllamaAdapter",
    "anthropic": f"{_PROVIDERS}.anthropic:AnthropicAdapter",
    "bedrock": f"{_PROVIDERS}.bedrock:BedrockAdapter",
    "gemini": f"{_PROVIDERS}.gemini:GeminiAdapter",
    "litellm": f"{_PROVIDERS}.litellm:LiteLLMAdapter",
    "scripted": f"{_PROVIDERS}.scripted:ScriptedAdapter",
}

DEFAULT_ALIASES: Dict[str, str] = {
    "azure_openai": "azure",
    "grok": "xai",
    "google": "gemini",
    "open_router": "openrouter",
}


def _import_target(path: str) -> Callable[[], Adapter]:
    module_name, _, attr = path.partition(":")
    if not attr:
        raise LLMConfigurationError(f"Adapter target must look like 'module:Class', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise LLMConfigurationError(f"Cannot import adapter module {module_name!r}: {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise LLMConfigurationError(f"Module {module_name!r} has no adapter {attr!r}") from exc


@dataclass
class ProviderRegistry:
    """
    Maps provider ids to adapter classes, imported on first use.

    Adapters are stateless, so one instance per (provider, model) is cached
    and shared between concurrent runs.
    """

    _targets: Dict[str, AdapterTarget] = field(default_factory=lambda: dict(DEFAULT_ADAPTERS))
    _aliases: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ALIASES))
    _cache: Dict[Tuple[str, str], Adapter] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def register(self, provider: str, target: AdapterTarget, *, aliases: Optional[List[str]] = None) -> None:
        """Register an adapter class/factory or a ``"module:Class"`` import path."""
        if not provider:
            raise ValueError("provider must be non-empty")
        key = provider.lower()
        with self._lock:
            self._targets[key] = target
            for alias in aliases or []:
                self._aliases[alias.lower()] = key
            self._cache = {k: v for k, v in self._cache.items() if k[0] != key}

    def canonical_name(self, provider: str) -> str:
        key = (provider or "").lower()
        key = self._aliases.get(key, key)
        if key not in self._targets:
            raise UnknownProviderError(provider, self.list_providers())
        return key

    def list_providers(self) -> List[str]:
        return sorted(self._targets)

    def _construct(self, name: str) -> Adapter:
        target = self._targets[name]
        factory = _import_target(target) if isinstance(target, str) else target
        if isinstance(factory, type) and issubclass(factory, BaseAdapter):
            return factory(name)
        return factory()

    def get_adapter(self, provider: str, model: str = "") -> Adapter:
        """Return the cached adapter for (provider, model), constructing it once."""
        name = self.canonical_name(provider)
        key = (name, model or "")
        adapter = self._cache.get(key)
        if adapter is None:
            with self._lock:
                adapter = self._cache.get(key)
                if adapter is None:
                    adapter = self._construct(name)
                    self._cache[key] = adapter
        return adapter

    def capabilities(self, provider: str, model: str = "") -> Capabilities:
        return self.get_adapter(provider, model).capabilities(model)

    def clear(self) -> None:
        """Drop cached adapter instances (registrations are kept)."""
        with self._lock:
            self._cache.clear()


_global_registry: ProviderRegistry | None = None
_global_registry_lock = threading.Lock()


def get_provider_registry() -> ProviderRegistry:
    """Return the process-wide ProviderRegistry singleton (thread-safe)."""

    global _global_registry
    if _global_registry is None:
        with _global_registry_lock:
            if _global_registry is None:
                _global_registry = ProviderRegistry()
    return _global_registry


__all__ = ["DEFAULT_ADAPTERS", "DEFAULT_ALIASES", "ProviderRegistry", "get_provider_registry"]
