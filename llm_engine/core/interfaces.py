from __future__ import annotations

from typing import Any, ContextManager, Dict, Iterator, List, Optional, Protocol, Tuple, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from llm_engine.service.errors import LLMConfigurationError
from llm_engine.types.config import ProviderConfig
from llm_engine.types.context import CancellationToken
from llm_engine.types.conversation import Conversation, ToolChoice
from llm_engine.types.embeddings import EmbeddingResponse
from llm_engine.types.responses import Completion
from llm_engine.types.streaming import StreamState

EMBEDDINGS_SHAPE = "embeddings"


class RequestOptions(BaseModel):
    """Per-request values resolved by the loop before an adapter builds a request."""

    model_config = ConfigDict(frozen=True)

    config: ProviderConfig
    model: str
    stream: bool = False
    tool_choice: ToolChoice = Field(default_factory=ToolChoice.auto)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    @classmethod
    def resolve(
        cls,
        conversation: Conversation,
        config: ProviderConfig,
        *,
        default_model: Optional[str] = None,
        stream: bool = False,
        tool_choice: Optional[ToolChoice] = None,
    ) -> "RequestOptions":
        """Combine conversation options with provider defaults; conversation wins."""
        generation = conversation.options
        model = generation.model or config.model or default_model
        if not model:
            raise LLMConfigurationError(
                f"No model configured for provider '{config.provider}'. "
                "Set ProviderConfig.model or GenerationOptions.model."
            )
        return cls(
            config=config,
            model=model,
            stream=stream,
            tool_choice=tool_choice or generation.tool_choice,
            temperature=(
                generation.temperature if generation.temperature is not None else config.temperature
            ),
            max_tokens=generation.max_tokens if generation.max_tokens is not None else config.max_tokens,
        )


class WireRequest(BaseModel):
    """A fully-built backend request: URL, headers, query and JSON body."""

    provider: str
    model: str
    method: str = "POST"
    url: str = ""
    path: str = ""
    headers: Dict[str, str] = Field(default_factory=dict, repr=False)
    params: Dict[str, str] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)
    stream: bool = False
    framing: str = "sse"  # "sse" | "ndjson" | "eventstream" | "litellm"
    shape: str = ""
    timeout: Optional[float] = None
    # Credentials/endpoint handed to non-HTTP transports (LiteLLM); never logged.
    transport_options: Dict[str, Any] = Field(default_factory=dict, repr=False, exclude=True)


class WireResponse(BaseModel):
    """Raw backend response handed to ``Adapter.parse_response``."""

    provider: str = ""
    status_code: int = 200
    headers: Dict[str, str] = Field(default_factory=dict)
    text: str = ""
    data: Any = None  # pre-decoded payload (LiteLLM objects); else parsed from text
    shape: str = ""


class Capabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    streaming: bool = True
    tools: bool = True
    structured_output: bool = True
    multimodal: bool = True
    embeddings: bool = False


@runtime_checkable
class StreamResponse(Protocol):
    """An open streaming response."""

    status_code: int

    def read(self) -> WireResponse:
        """Read the whole body (used for error responses)."""
        ...

    def iter_chunks(self) -> Iterator[str]:
        """Yield framed raw chunks (SSE data payloads, NDJSON lines, ...)."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Sends WireRequests. Must be safe to share between threads."""

    def send(self, request: WireRequest, cancellation: Optional[CancellationToken] = None) -> WireResponse:
        ...

    def open_stream(
        self, request: WireRequest, cancellation: Optional[CancellationToken] = None
    ) -> ContextManager[StreamResponse]:
        ...


@runtime_checkable
class Adapter(Protocol):
    """
    Backend adapter: canonical conversation <-> backend wire format.

    Adapters are stateless; per-call values arrive as parameters and
    per-stream values live in ``StreamState``.
    """

    name: str
    transport: str  # key into the engine's transports ("http", "litellm")

    def capabilities(self, model: str) -> Capabilities:
        ...

    def default_model_for(self, config: ProviderConfig) -> Optional[str]:
        ...

    def build_request(self, conversation: Conversation, options: RequestOptions) -> WireRequest:
        ...

    def parse_response(self, wire_response: WireResponse) -> Completion:
        ...

    def start_stream(self, request: WireRequest) -> StreamState:
        ...

    def process_stream_chunk(
        self, raw_chunk: str, state: StreamState
    ) -> Tuple[StreamState, Optional[str], bool]:
        ...

    def finish_stream(self, state: StreamState) -> Completion:
        ...

    def raise_for_status(self, wire_response: WireResponse) -> None:
        ...


@runtime_checkable
class EmbeddingAdapter(Protocol):
    """Adapter that can also turn input texts into an embeddings request."""

    name: str
    transport: str

    def embedding_model_for(self, config: ProviderConfig) -> Optional[str]:
        ...

    def build_embedding_request(
        self,
        inputs: List[str],
        config: ProviderConfig,
        model: str,
        dimensions: Optional[int] = None,
    ) -> WireRequest:
        ...

    def parse_embedding_response(self, wire_response: WireResponse) -> EmbeddingResponse:
        ...


__all__ = [
    "EMBEDDINGS_SHAPE",
    "RequestOptions",
    "WireRequest",
    "WireResponse",
    "Capabilities",
    "StreamResponse",
    "Transport",
    "Adapter",
    "EmbeddingAdapter",
]
