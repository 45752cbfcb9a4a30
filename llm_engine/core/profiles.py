"""Transport profiles: per-backend auth, endpoint, header and query overrides.

A profile turns an adapter's relative request (``path`` + body) into a fully
addressed one. Adapters map message formats only; anything that depends on
how a backend is reached lives here.
"""

from __future__ import annotations

from typing import Dict, Optional
from urllib.parse import quote

from llm_engine.core.interfaces import EMBEDDINGS_SHAPE, WireRequest
from llm_engine.service.errors import LLMConfigurationError
from llm_engine.types.config import ProviderConfig


class TransportProfile:
    """Base profile: JSON content type, configured base URL, no auth."""

    default_base_url: str = ""

    def __init__(self, default_base_url: Optional[str] = None) -> None:
        if default_base_url is not None:
            self.default_base_url = default_base_url

    def base_url(self, config: ProviderConfig) -> str:
        base = config.base_url or self.default_base_url
        if not base:
            raise LLMConfigurationError(f"No base_url configured for provider '{config.provider}'")
        return base.rstrip("/")

    def auth_headers(self, config: ProviderConfig) -> Dict[str, str]:
        return {}

    def query(self, config: ProviderConfig) -> Dict[str, str]:
        return {}

    def rewrite(self, request: WireRequest, config: ProviderConfig) -> WireRequest:
        """Hook for path/body rewriting (e.g. model-in-path endpoints)."""
        return request

    def apply(self, request: WireRequest, config: ProviderConfig) -> WireRequest:
        request = self.rewrite(request, config)
        headers = {"Content-Type": "application/json"}
        if request.stream and request.framing == "sse":
            headers["Accept"] = "text/event-stream"
        headers.update(request.headers)
        headers.update(self.auth_headers(config))
        headers.update(config.extra_headers)
        params = {**request.params, **self.query(config), **config.extra_query}
        return request.model_copy(
            update={
                "url": f"{self.base_url(config)}/{request.path.lstrip('/')}",
                "headers": headers,
                "params": params,
                "timeout": config.timeout,
            }
        )


class BearerProfile(TransportProfile):
    def auth_headers(self, config: ProviderConfig) -> Dict[str, str]:
        key = config.secret()
        return {"Authorization": f"Bearer {key}"} if key else {}


class OpenAIProfile(BearerProfile):
    default_base_url = "https://api.openai.com/v1"

    def auth_headers(self, config: ProviderConfig) -> Dict[str, str]:
        headers = super().auth_headers(config)
        if config.organization:
            headers["OpenAI-Organization"] = config.organization
        if config.project:
            headers["OpenAI-Project"] = config.project
        return headers


class AzureOpenAIProfile(TransportProfile):
    """Azure OpenAI: ``api-key`` header, ``api-version`` query, deployment URL."""

    default_api_version = "2024-10-21"

    def base_url(self, config: ProviderConfig) -> str:
        deployment = config.option("deployment_id") or config.model
        if config.base_url:
            base = config.base_url.rstrip("/")
            if "/deployments/" in base or not deployment:
                return base
            return f"{base}/openai/deployments/{deployment}"
        resource = config.option("azure_resource")
        if not resource or not deployment:
            raise LLMConfigurationError(
                "Azure OpenAI requires options.azure_resource and options.deployment_id (or base_url)"
            )
        return f"https://{resource}.openai.azure.com/openai/deployments/{deployment}"

    def auth_headers(self, config: ProviderConfig) -> Dict[str, str]:
        key = config.secret()
        return {"api-key": key} if key else {}

    def query(self, config: ProviderConfig) -> Dict[str, str]:
        return {"api-version": str(config.option("api_version") or self.default_api_version)}


class OpenRouterProfile(BearerProfile):
    """OpenRouter: bearer auth plus optional app attribution headers."""

    default_base_url = "https://openrouter.ai/api/v1"

    def auth_headers(self, config: ProviderConfig) -> Dict[str, str]:
        headers = super().auth_headers(config)
        if config.option("site_url"):
            headers["HTTP-Referer"] = str(config.option("site_url"))
        if config.option("app_name"):
            headers["X-Title"] = str(config.option("app_name"))
        return headers


class AnthropicProfile(TransportProfile):
    default_base_url = "https://api.anthropic.com/v1"
    default_version = "2023-06-01"

    def auth_headers(self, config: ProviderConfig) -> Dict[str, str]:
        headers = {"anthropic-version": str(config.option("anthropic_version") or self.default_version)}
        key = config.secret()
        if key:
            headers["x-api-key"] = key
        return headers


class BedrockProfile(BearerProfile):
    """
    Anthropic models on AWS Bedrock, authenticated with a Bedrock API key
    (bearer token). The model id moves from the body into the path.
    """

    default_region = "us-east-1"
    anthropic_version = "bedrock-2023-05-31"

    def base_url(self, config: ProviderConfig) -> str:
        if config.base_url:
            return config.base_url.rstrip("/")
        region = config.option("aws_region") or self.default_region
        return f"https://bedrock-runtime.{region}.amazonaws.com"

    def rewrite(self, request: WireRequest, config: ProviderConfig) -> WireRequest:
        body = {k: v for k, v in request.body.items() if k not in ("model", "stream")}
        body["anthropic_version"] = self.anthropic_version
        action = "invoke-with-response-stream" if request.stream else "invoke"
        headers = dict(request.headers)
        headers.pop("anthropic-version", None)
        if request.stream:
            headers["Accept"] = "application/vnd.amazon.eventstream"
        return request.model_copy(
            update={
                "path": f"model/{quote(request.model, safe='')}/{action}",
                "body": body,
                "headers": headers,
                "framing": "eventstream" if request.stream else request.framing,
            }
        )


class GeminiProfile(TransportProfile):
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def auth_headers(self, config: ProviderConfig) -> Dict[str, str]:
        key = config.secret()
        return {"x-goog-api-key": key} if key else {}

    def rewrite(self, request: WireRequest, config: ProviderConfig) -> WireRequest:
        model = request.model if request.model.startswith("models/") else f"models/{request.model}"
        if request.shape == EMBEDDINGS_SHAPE:
            return request.model_copy(update={"path": f"{model}:batchEmbedContents"})
        if request.stream:
            return request.model_copy(
                update={
                    "path": f"{model}:streamGenerateContent",
                    "params": {**request.params, "alt": "sse"},
                }
            )
        return request.model_copy(update={"path": f"{model}:generateContent"})


class LiteLLMProfile(TransportProfile):
    """No HTTP addressing: credentials and endpoint go to ``litellm.completion``."""

    def apply(self, request: WireRequest, config: ProviderConfig) -> WireRequest:
        options: Dict[str, object] = {}
        key = config.secret()
        if key:
            options["api_key"] = key
        if config.base_url:
            options["api_base"] = config.base_url
        if config.organization:
            options["organization"] = config.organization
        return request.model_copy(
            update={
                "headers": {**request.headers, **config.extra_headers},
                "timeout": config.timeout,
                "framing": "litellm",
                "transport_options": options,
            }
        )


__all__ = [
    "TransportProfile",
    "BearerProfile",
    "OpenAIProfile",
    "AzureOpenAIProfile",
    "OpenRouterProfile",
    "AnthropicProfile",
    "BedrockProfile",
    "GeminiProfile",
    "LiteLLMProfile",
]
