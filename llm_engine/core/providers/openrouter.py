from __future__ import annotations

from llm_engine.core.interfaces import Capabilities
from llm_engine.core.profiles import OpenRouterProfile
from llm_engine.core.providers.openai_chat import OpenAIChatAdapter


class OpenRouterAdapter(OpenAIChatAdapter):
    """OpenRouter gateway (OpenAI chat format, ``vendor/model`` ids)."""

    name = "openrouter"
    default_model = "openai/gpt-4o-mini"
    profile = OpenRouterProfile()
    default_capabilities = Capabilities()


__all__ = ["OpenRouterAdapter"]
