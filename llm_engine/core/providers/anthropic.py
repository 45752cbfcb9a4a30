"""Anthropic Messages API wire format."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from llm_engine.core.interfaces import RequestOptions
from llm_engine.core.profiles import AnthropicProfile
from llm_engine.core.providers.base import BaseAdapter
from llm_engine.service.errors import UnsupportedContentError
from llm_engine.types.conversation import Conversation, ToolChoice, ToolChoiceMode
from llm_engine.types.messages import FilePart, ImagePart, Message, TextPart, ToolCall
from llm_engine.types.responses import Completion, StopReason, Usage
from llm_engine.types.streaming import StreamChunk, StreamState, ToolCallDelta

DEFAULT_MAX_TOKENS = 4096
STRUCTURED_PREFIX = "structured:"

STOP_REASONS: Dict[str, StopReason] = {
    "end_turn": "end_turn",
    "stop_sequence": "end_turn",
    "tool_use": "tool_use",
    "max_tokens": "max_tokens",
    "refusal": "content_filter",
}


def anthropic_tool_choice(choice: ToolChoice) -> Dict[str, Any]:
    if choice.mode is ToolChoiceMode.REQUIRED:
        return {"type": "any"}
    if choice.mode is ToolChoiceMode.TOOL:
        return {"type": "tool", "name": choice.name}
    if choice.mode is ToolChoiceMode.NONE:
        return {"type": "none"}
    return {"type": "auto"}


class AnthropicAdapter(BaseAdapter):
    """
    Anthropic Messages: ``system`` is top-level, tool results travel as
    ``tool_result`` blocks inside user turns, and consecutive same-role
    turns are merged. Structured output is emulated with a forced tool whose
    input becomes the JSON text of the reply.
    """

    name = "anthropic"
    shape = "messages"
    default_model = "claude-3-5-sonnet-latest"
    profile = AnthropicProfile()

    def request_path(self, conversation: Conversation, options: RequestOptions) -> str:
        return "messages"

    def shape_for(self, conversation: Conversation) -> str:
        schema = conversation.options.output_schema
        if schema is not None:
            return f"{STRUCTURED_PREFIX}{schema.name}"
        return self.shape

    @staticmethod
    def structured_tool(shape: str) -> Optional[str]:
        if shape.startswith(STRUCTURED_PREFIX):
            return shape[len(STRUCTURED_PREFIX) :]
        return None

    # -- canonical -> wire --------------------------------------------------

    def format_part(self, part: Any) -> Dict[str, Any]:
        if isinstance(part, TextPart):
            return {"type": "text", "text": part.text}
        if isinstance(part, ImagePart):
            inline = part.inline()
            if inline:
                media_type, data = inline
                return {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}}
            if part.url:
                return {"type": "image", "source": {"type": "url", "url": part.url}}
        if isinstance(part, FilePart):
            if part.data:
                return {
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": part.media_type or "application/pdf",
                        "data": part.data,
                    },
                }
            if part.url:
                return {"type": "document", "source": {"type": "url", "url": part.url}}
            if part.file_id:
                return {"type": "document", "source": {"type": "file", "file_id": part.file_id}}
        raise UnsupportedContentError(f"{self.name}: unsupported content part {part!r}")

    def format_blocks(self, message: Message) -> List[Dict[str, Any]]:
        if message.role == "tool":
            block: Dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.text,
            }
            if message.has_media:
                block["content"] = [self.format_part(p) for p in message.parts]
            if message.metadata.get("is_error"):
                block["is_error"] = True
            return [block]
        if message.role == "assistant":
            self.text_only(message)
        blocks = [self.format_part(p) for p in message.parts]
        for call in message.tool_calls or []:
            blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
        return blocks

    def format_messages(self, conversation: Conversation) -> List[Dict[str, Any]]:
        turns: List[Dict[str, Any]] = []
        for message in conversation.non_system_messages:
            role = "assistant" if message.role == "assistant" else "user"
            blocks = self.format_blocks(message)
            if not blocks:
                continue
            if turns and turns[-1]["role"] == role:
                previous = turns[-1]
                if isinstance(previous["content"], str):
                    previous["content"] = [{"type": "text", "text": previous["content"]}]
                previous["content"].extend(blocks)
                continue
            text = message.single_text() if message.role == "user" else None
            turns.append({"role": role, "content": text if text is not None else blocks})
        return turns

    def build_body(self, conversation: Conversation, options: RequestOptions) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": options.model,
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": self.format_messages(conversation),
        }
        system = self.system_text(conversation)
        if system:
            body["system"] = system
        if options.temperature is not None:
            body["temperature"] = options.temperature
        tools = [
            {"name": t.name, "description": t.description, "input_schema": t.parameters}
            for t in conversation.tools
        ]
        tool_choice = anthropic_tool_choice(options.tool_choice) if tools else None
        schema = conversation.options.output_schema
        if schema is not None:
            tools.append(
                {
                    "name": schema.name,
                    "description": schema.description or "Respond with a JSON object matching the schema.",
                    "input_schema": schema.schema_,
                }
            )
            tool_choice = {"type": "tool", "name": schema.name}
        if tools:
            body["tools"] = tools
            body["tool_choice"] = tool_choice
        if options.stream:
            body["stream"] = True
        return body

    # -- wire -> canonical --------------------------------------------------

    @staticmethod
    def parse_usage(raw: Optional[Dict[str, Any]]) -> Optional[Usage]:
        if not raw:
            return None
        return Usage.of(raw.get("input_tokens"), raw.get("output_tokens"))

    def parse_payload(self, payload: Dict[str, Any], shape: str) -> Completion:
        structured = self.structured_tool(shape)
        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for block in payload.get("content") or []:
            kind = block.get("type")
            if kind == "text":
                texts.append(block.get("text") or "")
            elif kind == "tool_use":
                if structured and block.get("name") == structured:
                    texts.append(json.dumps(block.get("input") or {}))
                    continue
                tool_calls.append(ToolCall.from_raw(block.get("id") or "", block.get("name") or "", block.get("input")))
        stop_reason: StopReason = STOP_REASONS.get(payload.get("stop_reason") or "", "other")
        if structured and stop_reason == "tool_use" and not tool_calls:
            stop_reason = "end_turn"
        message = Message(
            role="assistant",
            content="".join(texts),
            tool_calls=tool_calls or None,
            id=payload.get("id"),
        )
        return Completion(message=message, stop_reason=stop_reason, usage=self.parse_usage(payload.get("usage")))

    def decode_stream_event(self, raw_chunk: str, state: StreamState) -> Dict[str, Any]:
        return self.load_chunk(raw_chunk, state)

    def parse_stream_chunk(self, raw_chunk: str, state: StreamState) -> Optional[StreamChunk]:
        event = self.decode_stream_event(raw_chunk, state)
        self.raise_for_payload_error(event)
        kind = event.get("type")
        structured = self.structured_tool(state.shape)
        if kind == "message_start":
            message = event.get("message") or {}
            return StreamChunk(message_id=message.get("id"), usage=self.parse_usage(message.get("usage")))
        if kind == "content_block_start":
            block = event.get("content_block") or {}
            index = event.get("index")
            if block.get("type") == "tool_use":
                if structured and block.get("name") == structured:
                    state.scratch["structured_index"] = index
                    return None
                return StreamChunk(
                    tool_calls=[ToolCallDelta(index=index, id=block.get("id"), name=block.get("name"))]
                )
            if block.get("type") == "text" and block.get("text"):
                return StreamChunk(content_delta=block["text"])
            return None
        if kind == "content_block_delta":
            delta = event.get("delta") or {}
            index = event.get("index")
            if delta.get("type") == "text_delta":
                return StreamChunk(content_delta=delta.get("text") or "")
            if delta.get("type") == "input_json_delta":
                fragment = delta.get("partial_json") or ""
                if structured and index == state.scratch.get("structured_index"):
                    return StreamChunk(content_delta=fragment)
                return StreamChunk(tool_calls=[ToolCallDelta(index=index, arguments_delta=fragment)])
            return None  # thinking / signature deltas
        if kind == "message_delta":
            delta = event.get("delta") or {}
            stop_reason: Optional[StopReason] = None
            if delta.get("stop_reason"):
                stop_reason = STOP_REASONS.get(delta["stop_reason"], "other")
                if structured and stop_reason == "tool_use" and not state.partial_tool_calls:
                    stop_reason = "end_turn"
            usage = event.get("usage") or {}
            return StreamChunk(
                stop_reason=stop_reason,
                usage=Usage(completion_tokens=usage["output_tokens"]) if "output_tokens" in usage else None,
            )
        if kind == "message_stop":
            return StreamChunk(final=True)
        return None


__all__ = ["DEFAULT_MAX_TOKENS", "anthropic_tool_choice", "AnthropicAdapter"]
