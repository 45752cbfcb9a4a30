from __future__ import annotations

from typing import List, Optional

from llm_engine.core.interfaces import WireRequest
from llm_engine.core.profiles import AzureOpenAIProfile
from llm_engine.core.providers.openai_chat import OpenAIChatAdapter
from llm_engine.types.config import ProviderConfig


class AzureOpenAIAdapter(OpenAIChatAdapter):
    """
    Azure OpenAI Service. Same chat wire format as OpenAI; the deployment
    (not the body's ``model``) selects the model, so the deployment id
    doubles as the model name when none is configured.
    """

    name = "azure"
    default_model = None
    default_embedding_model = None
    profile = AzureOpenAIProfile()

    def default_model_for(self, config: ProviderConfig) -> Optional[str]:
        return config.model or config.option("deployment_id")

    def embedding_model_for(self, config: ProviderConfig) -> Optional[str]:
        return config.option("embedding_deployment_id") or config.option("embedding_model")

    def build_embedding_request(
        self,
        inputs: List[str],
        config: ProviderConfig,
        model: str,
        dimensions: Optional[int] = None,
    ) -> WireRequest:
        # Embeddings live on their own deployment.
        config = config.model_copy(update={"options": {**config.options, "deployment_id": model}})
        return super().build_embedding_request(inputs, config, model, dimensions)


__all__ = ["AzureOpenAIAdapter"]
