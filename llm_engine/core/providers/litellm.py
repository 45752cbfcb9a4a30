from __future__ import annotations

from llm_engine.core.profiles import LiteLLMProfile
from llm_engine.core.providers.openai_chat import OpenAIChatAdapter


class LiteLLMAdapter(OpenAIChatAdapter):
    """
    Local multi-model router. Requests keep the OpenAI chat shape and are
    dispatched by ``litellm.completion``; the model id carries the routing
    prefix (e.g. ``anthropic/claude-3-5-haiku-latest``).
    """

    name = "litellm"
    transport = "litellm"
    framing = "litellm"
    default_model = "gpt-4o-mini"
    profile = LiteLLMProfile()


__all__ = ["LiteLLMAdapter"]
