"""Base class for HTTP-backed adapters.

Encapsulates the shared request assembly, error detection and stream
bookkeeping so provider subclasses only map message formats:

- ``build_body`` / ``request_path``: canonical conversation -> wire body.
- ``parse_payload``: decoded response body -> Completion.
- ``parse_stream_chunk``: one framed stream chunk -> StreamChunk (or None).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from llm_engine.core.interfaces import EMBEDDINGS_SHAPE, Capabilities, RequestOptions, WireRequest, WireResponse
from llm_engine.core.merger import StreamMerger
from llm_engine.core.profiles import TransportProfile
from llm_engine.service.errors import (
    LLMConfigurationError,
    ProviderApiError,
    UnsupportedCapabilityError,
    UnsupportedContentError,
    category_for_status,
    extract_html_message,
)
from llm_engine.types.config import ProviderConfig
from llm_engine.types.conversation import Conversation
from llm_engine.types.embeddings import EmbeddingResponse
from llm_engine.types.messages import Message, TextPart
from llm_engine.types.responses import Completion, Usage
from llm_engine.types.streaming import StreamChunk, StreamState

logger = logging.getLogger(__name__)


class BaseAdapter:
    """Shared adapter plumbing. Subclasses set ``name`` and ``profile``."""

    name: str = ""
    transport: str = "http"
    framing: str = "sse"
    shape: str = ""
    default_model: Optional[str] = None
    default_embedding_model: Optional[str] = None
    profile: TransportProfile = TransportProfile()
    default_capabilities: Capabilities = Capabilities()

    def __init__(self, name: Optional[str] = None, profile: Optional[TransportProfile] = None) -> None:
        if name:
            self.name = name
        if profile is not None:
            self.profile = profile
        self.merger = StreamMerger()

    # -- configuration ------------------------------------------------------

    def capabilities(self, model: str) -> Capabilities:
        return self.default_capabilities

    def default_model_for(self, config: ProviderConfig) -> Optional[str]:
        return config.model or self.default_model

    # -- request side -------------------------------------------------------

    def build_request(self, conversation: Conversation, options: RequestOptions) -> WireRequest:
        conversation.validate_for_request()
        body = self.build_body(conversation, options)
        body.update(conversation.options.extras)
        request = WireRequest(
            provider=self.name,
            model=options.model,
            path=self.request_path(conversation, options),
            body=body,
            stream=options.stream,
            framing=self.framing,
            shape=self.shape_for(conversation),
        )
        return self.profile.apply(request, options.config)

    def build_body(self, conversation: Conversation, options: RequestOptions) -> Dict[str, Any]:
        raise NotImplementedError

    def request_path(self, conversation: Conversation, options: RequestOptions) -> str:
        return ""

    def shape_for(self, conversation: Conversation) -> str:
        return self.shape

    def text_only(self, message: Message) -> str:
        """Text of a message whose wire slot cannot carry media on this backend."""
        if message.has_media:
            kinds = sorted({p.type for p in message.parts if not isinstance(p, TextPart)})
            raise UnsupportedContentError(
                f"{self.name}: {message.role} messages cannot carry {', '.join(kinds)} parts"
            )
        return message.text

    def system_text(self, conversation: Conversation) -> str:
        for message in conversation.messages:
            if message.role == "system":
                self.text_only(message)
        return conversation.system_text

    # -- error surface ------------------------------------------------------

    def error_details(self, payload: Any) -> Optional[Tuple[str, Optional[str], Optional[int]]]:
        """Return (message, category, status) when ``payload`` is an error object."""
        if isinstance(payload, list) and payload:
            payload = payload[0]
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message") or json.dumps(error)
            code = error.get("code")
            category = error.get("type") or error.get("status")
            if not category and isinstance(code, str):
                category = code
            status = code if isinstance(code, int) else None
            if not category and status is not None:
                category = category_for_status(status)
            return str(message), (str(category).lower() if category else None), status
        if isinstance(error, str) and error:
            return error, None, None
        return None

    def raise_for_payload_error(self, payload: Any, status_code: Optional[int] = None) -> None:
        details = self.error_details(payload)
        if details is None:
            return
        message, category, status = details
        status = status or status_code
        raise ProviderApiError(
            message,
            provider=self.name,
            status_code=status,
            category=category or category_for_status(status),
            body=json.dumps(payload, default=str),
        )

    def raise_for_status(self, wire_response: WireResponse) -> None:
        status = wire_response.status_code
        if 200 <= status < 300:
            return
        text = wire_response.text or ""
        payload: Any = wire_response.data
        if payload is None:
            try:
                payload = json.loads(text)
            except ValueError:
                payload = None
        details = self.error_details(payload) if payload is not None else None
        if details is not None:
            message, category, _ = details
        elif payload is not None:
            message, category = text[:200], None
        else:
            message, category = extract_html_message(text), None
        logger.debug("LLM error response provider=%s status=%s", self.name, status)
        raise ProviderApiError(
            message,
            provider=self.name,
            status_code=status,
            category=category or category_for_status(status),
            body=text,
        )

    # -- response side ------------------------------------------------------

    def decode(self, wire_response: WireResponse) -> Any:
        if wire_response.data is not None:
            return wire_response.data
        try:
            return json.loads(wire_response.text)
        except ValueError as exc:
            raise ProviderApiError(
                f"Malformed response body: {extract_html_message(wire_response.text)}",
                provider=self.name,
                status_code=wire_response.status_code,
                category="malformed_response",
                body=wire_response.text,
            ) from exc

    def parse_response(self, wire_response: WireResponse) -> Completion:
        self.raise_for_status(wire_response)
        payload = self.decode(wire_response)
        self.raise_for_payload_error(payload, wire_response.status_code)
        if not isinstance(payload, dict):
            raise ProviderApiError(
                "Response body is not a JSON object",
                provider=self.name,
                status_code=wire_response.status_code,
                category="malformed_response",
            )
        completion = self.parse_payload(payload, wire_response.shape)
        completion.raw = payload
        return completion

    def parse_payload(self, payload: Dict[str, Any], shape: str) -> Completion:
        raise NotImplementedError

    # -- embeddings ---------------------------------------------------------

    def embedding_model_for(self, config: ProviderConfig) -> Optional[str]:
        return config.option("embedding_model") or self.default_embedding_model

    def build_embedding_request(
        self,
        inputs: List[str],
        config: ProviderConfig,
        model: str,
        dimensions: Optional[int] = None,
    ) -> WireRequest:
        if not inputs:
            raise LLMConfigurationError("Embedding request needs at least one input text")
        request = WireRequest(
            provider=self.name,
            model=model,
            path=self.embedding_path(model),
            body=self.build_embedding_body(inputs, model, dimensions),
            shape=EMBEDDINGS_SHAPE,
        )
        return self.profile.apply(request, config)

    def embedding_path(self, model: str) -> str:
        return "embeddings"

    def build_embedding_body(self, inputs: List[str], model: str, dimensions: Optional[int]) -> Dict[str, Any]:
        raise UnsupportedCapabilityError(self.name, model, "embeddings")

    def parse_embedding_response(self, wire_response: WireResponse) -> EmbeddingResponse:
        self.raise_for_status(wire_response)
        payload = self.decode(wire_response)
        self.raise_for_payload_error(payload, wire_response.status_code)
        if not isinstance(payload, dict):
            raise ProviderApiError(
                "Embedding response body is not a JSON object",
                provider=self.name,
                status_code=wire_response.status_code,
                category="malformed_response",
            )
        vectors, usage = self.parse_embedding_payload(payload)
        return EmbeddingResponse(
            vectors=vectors,
            provider=self.name,
            model=str(payload.get("model") or ""),
            usage=usage,
            raw=payload,
        )

    def parse_embedding_payload(self, payload: Dict[str, Any]) -> Tuple[List[List[float]], Optional[Usage]]:
        raise NotImplementedError

    # -- streaming ----------------------------------------------------------

    def start_stream(self, request: WireRequest) -> StreamState:
        return StreamState(shape=request.shape)

    def load_chunk(self, raw_chunk: str, state: StreamState) -> Any:
        try:
            event = json.loads(raw_chunk)
        except ValueError as exc:
            raise ProviderApiError(
                f"Malformed stream chunk: {raw_chunk[:200]!r}",
                provider=self.name,
                category="malformed_stream",
            ) from exc
        state.scratch["last_event"] = event
        return event

    def parse_stream_chunk(self, raw_chunk: str, state: StreamState) -> Optional[StreamChunk]:
        raise NotImplementedError

    def process_stream_chunk(
        self, raw_chunk: str, state: StreamState
    ) -> Tuple[StreamState, Optional[str], bool]:
        if state.finished:
            return state, None, True
        state.raw_events += 1
        chunk = self.parse_stream_chunk(raw_chunk, state)
        if chunk is None:
            return state, None, False
        self.merger.apply(state, chunk)
        return state, chunk.content_delta or None, state.finished

    def finish_stream(self, state: StreamState) -> Completion:
        """Complete a stream whose bytes have ended."""
        if not state.finished:
            if state.stop_reason is None:
                raise ProviderApiError(
                    "Stream ended before a terminal event",
                    provider=self.name,
                    category="incomplete_stream",
                )
            self.merger.finalize(state)
        return Completion(
            message=state.message,
            stop_reason=state.stop_reason or "other",
            usage=state.usage,
            raw=state.scratch.get("last_event"),
        )


__all__ = ["BaseAdapter"]
