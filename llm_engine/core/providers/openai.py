from __future__ import annotations

from typing import List, Optional, Tuple

from llm_engine.core.interfaces import Capabilities, RequestOptions, WireRequest, WireResponse
from llm_engine.core.profiles import OpenAIProfile, TransportProfile
from llm_engine.core.providers.base import BaseAdapter
from llm_engine.core.providers.openai_chat import OpenAIChatAdapter
from llm_engine.core.providers.openai_responses import OpenAIResponsesAdapter
from llm_engine.types.config import ProviderConfig
from llm_engine.types.conversation import Conversation
from llm_engine.types.embeddings import EmbeddingResponse
from llm_engine.types.responses import Completion
from llm_engine.types.streaming import StreamState

CHAT = "chat"
RESPONSES = "responses"


def select_request_shape(conversation: Conversation) -> str:
    """Pick the wire shape for a conversation.

    Multimodal parts or a structured-output schema need the richer responses
    shape; everything else goes through chat completions.
    """
    if conversation.options.output_schema is not None or conversation.has_media:
        return RESPONSES
    return CHAT


class OpenAIAdapter(BaseAdapter):
    """OpenAI: routes each request to the chat or responses wire format."""

    name = "openai"
    default_model = "gpt-4o-mini"
    default_embedding_model = "text-embedding-3-small"
    default_capabilities = Capabilities(embeddings=True)

    def __init__(self, name: Optional[str] = None, profile: Optional[TransportProfile] = None) -> None:
        super().__init__(name, profile)
        profile = profile or OpenAIProfile()
        self.chat = OpenAIChatAdapter(self.name, profile)
        self.responses = OpenAIResponsesAdapter(self.name, profile)

    def _for_shape(self, shape: str) -> BaseAdapter:
        return self.responses if shape == RESPONSES else self.chat

    def build_request(self, conversation: Conversation, options: RequestOptions) -> WireRequest:
        return self._for_shape(select_request_shape(conversation)).build_request(conversation, options)

    def raise_for_status(self, wire_response: WireResponse) -> None:
        self._for_shape(wire_response.shape).raise_for_status(wire_response)

    def parse_response(self, wire_response: WireResponse) -> Completion:
        return self._for_shape(wire_response.shape).parse_response(wire_response)

    def start_stream(self, request: WireRequest) -> StreamState:
        return self._for_shape(request.shape).start_stream(request)

    def process_stream_chunk(
        self, raw_chunk: str, state: StreamState
    ) -> Tuple[StreamState, Optional[str], bool]:
        return self._for_shape(state.shape).process_stream_chunk(raw_chunk, state)

    def finish_stream(self, state: StreamState) -> Completion:
        return self._for_shape(state.shape).finish_stream(state)

    def build_embedding_request(
        self,
        inputs: List[str],
        config: ProviderConfig,
        model: str,
        dimensions: Optional[int] = None,
    ) -> WireRequest:
        return self.chat.build_embedding_request(inputs, config, model, dimensions)

    def parse_embedding_response(self, wire_response: WireResponse) -> EmbeddingResponse:
        return self.chat.parse_embedding_response(wire_response)


__all__ = ["CHAT", "RESPONSES", "select_request_shape", "OpenAIAdapter"]
