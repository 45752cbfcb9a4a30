from __future__ import annotations

from llm_engine.core.interfaces import Capabilities
from llm_engine.core.profiles import BearerProfile
from llm_engine.core.providers.openai_chat import OpenAIChatAdapter


class XAIAdapter(OpenAIChatAdapter):
    """xAI Grok models over the OpenAI-compatible chat endpoint."""

    name = "xai"
    default_model = "grok-2-latest"
    profile = BearerProfile("https://api.x.ai/v1")

    def capabilities(self, model: str) -> Capabilities:
        # Only the vision variants accept image input.
        return Capabilities(multimodal="vision" in model)


__all__ = ["XAIAdapter"]
