"""Hosted and local OpenAI-compatible servers that only differ by base URL."""

from __future__ import annotations

from llm_engine.core.interfaces import Capabilities
from llm_engine.core.profiles import BearerProfile
from llm_engine.core.providers.openai_chat import OpenAIChatAdapter


class GroqAdapter(OpenAIChatAdapter):
    name = "groq"
    default_model = "llama-3.3-70b-versatile"
    profile = BearerProfile("https://api.groq.com/openai/v1")
    default_capabilities = Capabilities(multimodal=False)


class DeepSeekAdapter(OpenAIChatAdapter):
    name = "deepseek"
    default_model = "deepseek-chat"
    profile = BearerProfile("https://api.deepseek.com/v1")
    default_capabilities = Capabilities(multimodal=False)


class MistralAdapter(OpenAIChatAdapter):
    name = "mistral"
    default_model = "mistral-small-latest"
    default_embedding_model = "mistral-embed"
    profile = BearerProfile("https://api.mistral.ai/v1")


class TogetherAdapter(OpenAIChatAdapter):
    name = "together"
    default_model = None
    default_embedding_model = None
    profile = BearerProfile("https://api.together.xyz/v1")


class LMStudioAdapter(OpenAIChatAdapter):
    name = "lmstudio"
    default_model = None
    default_embedding_model = None
    profile = BearerProfile("http://localhost:1234/v1")


__all__ = ["GroqAdapter", "DeepSeekAdapter", "MistralAdapter", "TogetherAdapter", "LMStudioAdapter"]
