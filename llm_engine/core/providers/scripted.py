"""Scripted in-process backend adapter.

Requests carry the canonical conversation as JSON and are answered by a
``ScriptedBackend`` transport (see ``llm_engine.testing``) instead of the
network, so the full engine path runs in tests and offline development.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from llm_engine.core.interfaces import Capabilities, RequestOptions, WireRequest
from llm_engine.core.profiles import TransportProfile
from llm_engine.core.providers.base import BaseAdapter
from llm_engine.service.errors import ProviderApiError
from llm_engine.types.config import ProviderConfig
from llm_engine.types.conversation import Conversation
from llm_engine.types.messages import Message
from llm_engine.types.responses import Completion, Usage
from llm_engine.types.streaming import StreamChunk, StreamState

SCRIPTED_SCHEME = "scripted://"


class ScriptedProfile(TransportProfile):
    """No network addressing; the URL only names the scripted model."""

    def apply(self, request: WireRequest, config: ProviderConfig) -> WireRequest:
        return request.model_copy(
            update={
                "url": f"{SCRIPTED_SCHEME}{request.model}/{request.path}".rstrip("/"),
                "headers": {**request.headers, **config.extra_headers},
                "timeout": config.timeout,
            }
        )


class ScriptedAdapter(BaseAdapter):
    """Canonical-JSON wire format: messages in, a serialized Completion out."""

    name = "scripted"
    transport = "scripted"
    framing = "scripted"
    shape = "canonical"
    default_model = "scripted-model"
    default_embedding_model = "scripted-embedding"
    profile = ScriptedProfile()
    default_capabilities = Capabilities(embeddings=True)

    def request_path(self, conversation: Conversation, options: RequestOptions) -> str:
        return "generate"

    def build_body(self, conversation: Conversation, options: RequestOptions) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": options.model,
            "messages": [m.model_dump(mode="json", exclude_none=True) for m in conversation.messages],
        }
        if conversation.tools:
            body["tools"] = [t.model_dump(mode="json") for t in conversation.tools]
            body["tool_choice"] = options.tool_choice.model_dump(mode="json")
        schema = conversation.options.output_schema
        if schema is not None:
            body["output_schema"] = schema.model_dump(mode="json", by_alias=True)
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        if options.stream:
            body["stream"] = True
        return body

    def parse_payload(self, payload: Dict[str, Any], shape: str) -> Completion:
        try:
            message = Message.model_validate(payload.get("message") or {"role": "assistant"})
            usage = Usage.model_validate(payload["usage"]) if payload.get("usage") else None
        except ValidationError as exc:
            raise ProviderApiError(
                f"Malformed scripted reply: {exc}",
                provider=self.name,
                category="malformed_response",
            ) from exc
        return Completion(message=message, stop_reason=payload.get("stop_reason") or "end_turn", usage=usage)

    def parse_stream_chunk(self, raw_chunk: str, state: StreamState) -> Optional[StreamChunk]:
        try:
            return StreamChunk.model_validate_json(raw_chunk)
        except ValidationError as exc:
            raise ProviderApiError(
                f"Malformed stream chunk: {raw_chunk[:200]!r}",
                provider=self.name,
                category="malformed_stream",
            ) from exc

    # -- embeddings ---------------------------------------------------------

    def build_embedding_body(self, inputs: List[str], model: str, dimensions: Optional[int]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": model, "input": inputs}
        if dimensions is not None:
            body["dimensions"] = dimensions
        return body

    def parse_embedding_payload(self, payload: Dict[str, Any]) -> Tuple[List[List[float]], Optional[Usage]]:
        vectors = [[float(v) for v in vector] for vector in payload.get("embeddings") or []]
        return vectors, None


__all__ = ["SCRIPTED_SCHEME", "ScriptedProfile", "ScriptedAdapter"]
