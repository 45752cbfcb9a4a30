"""Ollama native ``/api/chat`` wire format (NDJSON streaming)."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from llm_engine.core.interfaces import Capabilities, RequestOptions
from llm_engine.core.profiles import BearerProfile
from llm_engine.core.providers.base import BaseAdapter
from llm_engine.service.errors import ProviderApiError, UnsupportedContentError
from llm_engine.types.conversation import Conversation, ToolChoiceMode
from llm_engine.types.messages import ImagePart, Message, TextPart, ToolCall
from llm_engine.types.responses import Completion, StopReason, Usage
from llm_engine.types.streaming import StreamChunk, StreamState, ToolCallDelta

DONE_REASONS: Dict[str, StopReason] = {
    "stop": "end_turn",
    "length": "max_tokens",
}


def synthesize_call_id(created_at: Optional[str], position: int) -> str:
    stamp = "".join(ch for ch in (created_at or "") if ch.isalnum())
    return f"call_{stamp}_{position}" if stamp else f"call_{position}"


class OllamaAdapter(BaseAdapter):
    """Local Ollama server. Images must be inline base64; files are not supported."""

    name = "ollama"
    shape = "native"
    framing = "ndjson"
    default_model = "llama3.2"
    default_embedding_model = "nomic-embed-text"
    profile = BearerProfile("http://localhost:11434")
    default_capabilities = Capabilities(embeddings=True)

    def request_path(self, conversation: Conversation, options: RequestOptions) -> str:
        return "api/chat"

    # -- canonical -> wire --------------------------------------------------

    def format_message(self, message: Message) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": message.role, "content": message.text}
        images: List[str] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                continue
            if isinstance(part, ImagePart):
                inline = part.inline()
                if inline is None:
                    raise UnsupportedContentError(f"{self.name}: images must be base64 data, not URLs")
                images.append(inline[1])
                continue
            raise UnsupportedContentError(f"{self.name}: {part.type} parts are not supported")
        if images:
            out["images"] = images
        if message.tool_calls:
            out["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.arguments}} for call in message.tool_calls
            ]
        if message.role == "tool" and message.name:
            out["tool_name"] = message.name
        return out

    def build_body(self, conversation: Conversation, options: RequestOptions) -> Dict[str, Any]:
        messages = []
        for message in conversation.messages:
            formatted = self.format_message(message)
            if message.role == "tool" and "tool_name" not in formatted:
                name = conversation.tool_call_name(message.tool_call_id or "")
                if name:
                    formatted["tool_name"] = name
            messages.append(formatted)
        body: Dict[str, Any] = {
            "model": options.model,
            "messages": messages,
            "stream": options.stream,
        }
        # No tool_choice on Ollama; NONE drops the tools instead.
        if conversation.tools and options.tool_choice.mode is not ToolChoiceMode.NONE:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
                }
                for t in conversation.tools
            ]
        schema = conversation.options.output_schema
        if schema is not None:
            body["format"] = schema.schema_
        model_options: Dict[str, Any] = {}
        if options.temperature is not None:
            model_options["temperature"] = options.temperature
        if options.max_tokens is not None:
            model_options["num_predict"] = options.max_tokens
        if model_options:
            body["options"] = model_options
        return body

    # -- wire -> canonical --------------------------------------------------

    @staticmethod
    def parse_usage(payload: Dict[str, Any]) -> Optional[Usage]:
        if "prompt_eval_count" not in payload and "eval_count" not in payload:
            return None
        return Usage.of(payload.get("prompt_eval_count"), payload.get("eval_count"))

    def parse_tool_calls(self, raw_calls: List[Dict[str, Any]], created_at: Optional[str], start: int = 0) -> List[ToolCall]:
        calls = []
        for offset, raw in enumerate(raw_calls):
            function = raw.get("function") or {}
            calls.append(
                ToolCall.from_raw(
                    raw.get("id") or synthesize_call_id(created_at, start + offset),
                    function.get("name") or "",
                    function.get("arguments"),
                )
            )
        return calls

    def parse_payload(self, payload: Dict[str, Any], shape: str) -> Completion:
        raw_message = payload.get("message") or {}
        tool_calls = self.parse_tool_calls(raw_message.get("tool_calls") or [], payload.get("created_at"))
        stop_reason: StopReason = (
            "tool_use" if tool_calls else DONE_REASONS.get(payload.get("done_reason") or "stop", "other")
        )
        message = Message(
            role="assistant",
            content=raw_message.get("content") or "",
            tool_calls=tool_calls or None,
        )
        return Completion(message=message, stop_reason=stop_reason, usage=self.parse_usage(payload))

    def parse_stream_chunk(self, raw_chunk: str, state: StreamState) -> Optional[StreamChunk]:
        event = self.load_chunk(raw_chunk, state)
        self.raise_for_payload_error(event)
        if "created_at" not in state.scratch:
            state.scratch["created_at"] = event.get("created_at")
            state.scratch["call_count"] = 0
        raw_message = event.get("message") or {}
        chunk = StreamChunk(content_delta=raw_message.get("content") or None)
        for raw in raw_message.get("tool_calls") or []:
            function = raw.get("function") or {}
            position = state.scratch["call_count"]
            state.scratch["call_count"] = position + 1
            arguments = function.get("arguments")
            chunk.tool_calls.append(
                ToolCallDelta(
                    id=raw.get("id") or synthesize_call_id(state.scratch["created_at"], position),
                    name=function.get("name") or "",
                    arguments_delta=arguments if isinstance(arguments, str) else json.dumps(arguments or {}),
                )
            )
        if event.get("done"):
            chunk.usage = self.parse_usage(event)
            has_calls = bool(chunk.tool_calls or state.partial_tool_calls)
            chunk.stop_reason = (
                "tool_use" if has_calls else DONE_REASONS.get(event.get("done_reason") or "stop", "other")
            )
            chunk.final = True
        return chunk

    # -- embeddings ---------------------------------------------------------

    def embedding_path(self, model: str) -> str:
        return "api/embed"

    def build_embedding_body(self, inputs: List[str], model: str, dimensions: Optional[int]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": model, "input": inputs}
        if dimensions is not None:
            body["dimensions"] = dimensions
        return body

    def parse_embedding_payload(self, payload: Dict[str, Any]) -> Tuple[List[List[float]], Optional[Usage]]:
        embeddings = payload.get("embeddings")
        if not embeddings:
            raise ProviderApiError(
                "Ollama embedding response has no embeddings",
                provider=self.name,
                category="malformed_response",
            )
        prompt_tokens = payload.get("prompt_eval_count")
        usage = Usage.of(prompt_tokens, None, prompt_tokens) if prompt_tokens is not None else None
        return [[float(v) for v in vector] for vector in embeddings], usage


__all__ = ["synthesize_call_id", "OllamaAdapter"]
