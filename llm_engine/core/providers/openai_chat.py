"""OpenAI Chat Completions wire format.

Shared by every OpenAI-compatible backend (OpenAI chat shape, Azure OpenAI,
OpenRouter, xAI, the hosted presets and the LiteLLM router).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from llm_engine.core.interfaces import Capabilities, RequestOptions
from llm_engine.core.profiles import OpenAIProfile
from llm_engine.core.providers.base import BaseAdapter
from llm_engine.service.errors import ProviderApiError, UnsupportedContentError
from llm_engine.types.conversation import Conversation, ToolChoice, ToolChoiceMode, ToolDefinition
from llm_engine.types.messages import FilePart, ImagePart, Message, TextPart, ToolCall
from llm_engine.types.responses import Completion, StopReason, Usage
from llm_engine.types.streaming import StreamChunk, StreamState, ToolCallDelta

STREAM_DONE = "[DONE]"

FINISH_REASONS: Dict[str, StopReason] = {
    "stop": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "length": "max_tokens",
    "content_filter": "content_filter",
}


def map_finish_reason(reason: Optional[str]) -> Optional[StopReason]:
    if not reason:
        return None
    return FINISH_REASONS.get(reason, "other")


def chat_tools(tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }
        for tool in tools
    ]


def chat_tool_choice(choice: ToolChoice) -> Any:
    if choice.mode is ToolChoiceMode.REQUIRED:
        return "required"
    if choice.mode is ToolChoiceMode.TOOL:
        return {"type": "function", "function": {"name": choice.name}}
    if choice.mode is ToolChoiceMode.NONE:
        return "none"
    return "auto"


class OpenAIChatAdapter(BaseAdapter):
    """Chat Completions: ``messages`` in, ``choices[0].message`` out."""

    name = "openai"
    shape = "chat"
    default_model = "gpt-4o-mini"
    default_embedding_model = "text-embedding-3-small"
    profile = OpenAIProfile()
    default_capabilities = Capabilities(embeddings=True)
    max_tokens_field = "max_tokens"

    def request_path(self, conversation: Conversation, options: RequestOptions) -> str:
        return "chat/completions"

    # -- canonical -> wire --------------------------------------------------

    def format_part(self, part: Any) -> Dict[str, Any]:
        if isinstance(part, TextPart):
            return {"type": "text", "text": part.text}
        if isinstance(part, ImagePart):
            url = part.as_data_url()
            if not url:
                raise UnsupportedContentError(f"{self.name}: image part has neither url nor data")
            image: Dict[str, Any] = {"url": url}
            if part.detail:
                image["detail"] = part.detail
            return {"type": "image_url", "image_url": image}
        if isinstance(part, FilePart):
            if part.file_id:
                return {"type": "file", "file": {"file_id": part.file_id}}
            if part.data:
                media_type = part.media_type or "application/pdf"
                return {
                    "type": "file",
                    "file": {
                        "filename": part.filename or "document",
                        "file_data": f"data:{media_type};base64,{part.data}",
                    },
                }
            raise UnsupportedContentError(
                f"{self.name}: chat completions cannot reference files by URL; "
                "upload the file or inline its data"
            )
        raise UnsupportedContentError(f"{self.name}: unsupported content part {part!r}")

    def format_message(self, message: Message) -> Dict[str, Any]:
        if message.role == "tool":
            return {"role": "tool", "tool_call_id": message.tool_call_id, "content": self.text_only(message)}
        if message.role == "assistant":
            out: Dict[str, Any] = {"role": "assistant", "content": self.text_only(message) or None}
            if message.tool_calls:
                out["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments_json()},
                    }
                    for call in message.tool_calls
                ]
            return out
        if message.role == "system":
            return {"role": "system", "content": self.text_only(message)}
        text = message.single_text()
        if text is not None:
            return {"role": message.role, "content": text}
        return {"role": message.role, "content": [self.format_part(p) for p in message.parts]}

    def build_body(self, conversation: Conversation, options: RequestOptions) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": options.model,
            "messages": [self.format_message(m) for m in conversation.messages],
        }
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body[self.max_tokens_field] = options.max_tokens
        if conversation.tools:
            body["tools"] = chat_tools(conversation.tools)
            body["tool_choice"] = chat_tool_choice(options.tool_choice)
        schema = conversation.options.output_schema
        if schema is not None:
            json_schema: Dict[str, Any] = {
                "name": schema.name,
                "schema": schema.schema_,
                "strict": schema.strict,
            }
            if schema.description:
                json_schema["description"] = schema.description
            body["response_format"] = {"type": "json_schema", "json_schema": json_schema}
        if options.stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return body

    # -- wire -> canonical --------------------------------------------------

    @staticmethod
    def parse_usage(raw: Optional[Dict[str, Any]]) -> Optional[Usage]:
        if not raw:
            return None
        return Usage.of(raw.get("prompt_tokens"), raw.get("completion_tokens"), raw.get("total_tokens"))

    def parse_payload(self, payload: Dict[str, Any], shape: str) -> Completion:
        choices = payload.get("choices") or []
        if not choices:
            raise ProviderApiError(
                "Chat completion response has no choices",
                provider=self.name,
                category="malformed_response",
            )
        choice = choices[0]
        raw_message = choice.get("message") or {}
        tool_calls: List[ToolCall] = []
        for position, call in enumerate(raw_message.get("tool_calls") or []):
            function = call.get("function") or {}
            tool_calls.append(
                ToolCall.from_raw(
                    call.get("id") or f"call_{position}",
                    function.get("name") or "",
                    function.get("arguments"),
                )
            )
        content = raw_message.get("content")
        if isinstance(content, list):
            content = "".join(p.get("text", "") for p in content if isinstance(p, dict))
        message = Message(
            role="assistant",
            content=content or "",
            tool_calls=tool_calls or None,
            id=payload.get("id"),
        )
        stop_reason = map_finish_reason(choice.get("finish_reason"))
        if tool_calls:
            stop_reason = "tool_use"
        return Completion(
            message=message,
            stop_reason=stop_reason or "end_turn",
            usage=self.parse_usage(payload.get("usage")),
        )

    # -- embeddings ---------------------------------------------------------

    def build_embedding_body(self, inputs: List[str], model: str, dimensions: Optional[int]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": model, "input": inputs, "encoding_format": "float"}
        if dimensions is not None:
            body["dimensions"] = dimensions
        return body

    def parse_embedding_payload(self, payload: Dict[str, Any]) -> Tuple[List[List[float]], Optional[Usage]]:
        rows = payload.get("data") or []
        if not rows:
            raise ProviderApiError(
                "Embedding response has no data",
                provider=self.name,
                category="malformed_response",
            )
        rows = sorted(rows, key=lambda row: row.get("index") or 0)
        vectors = [[float(v) for v in row.get("embedding") or []] for row in rows]
        raw_usage = payload.get("usage")
        usage = Usage.of(raw_usage.get("prompt_tokens"), None, raw_usage.get("total_tokens")) if raw_usage else None
        return vectors, usage

    def parse_stream_chunk(self, raw_chunk: str, state: StreamState) -> Optional[StreamChunk]:
        if raw_chunk.strip() == STREAM_DONE:
            return StreamChunk(final=True)
        event = self.load_chunk(raw_chunk, state)
        self.raise_for_payload_error(event)
        chunk = StreamChunk(message_id=event.get("id"), usage=self.parse_usage(event.get("usage")))
        choices = event.get("choices") or []
        if not choices:
            return chunk
        choice = choices[0]
        delta = choice.get("delta") or {}
        if delta.get("content"):
            chunk.content_delta = delta["content"]
        for call in delta.get("tool_calls") or []:
            function = call.get("function") or {}
            chunk.tool_calls.append(
                ToolCallDelta(
                    index=call.get("index"),
                    id=call.get("id"),
                    name=function.get("name"),
                    arguments_delta=function.get("arguments") or "",
                )
            )
        chunk.stop_reason = map_finish_reason(choice.get("finish_reason"))
        return chunk


__all__ = [
    "STREAM_DONE",
    "map_finish_reason",
    "chat_tools",
    "chat_tool_choice",
    "OpenAIChatAdapter",
]
