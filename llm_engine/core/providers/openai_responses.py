"""OpenAI Responses API wire format (multimodal input and structured output)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from llm_engine.core.interfaces import RequestOptions
from llm_engine.core.profiles import OpenAIProfile
from llm_engine.core.providers.base import BaseAdapter
from llm_engine.service.errors import ProviderApiError, UnsupportedContentError
from llm_engine.types.conversation import Conversation, ToolChoice, ToolChoiceMode
from llm_engine.types.messages import FilePart, ImagePart, Message, TextPart, ToolCall
from llm_engine.types.responses import Completion, StopReason, Usage
from llm_engine.types.streaming import StreamChunk, StreamState, ToolCallDelta

INCOMPLETE_REASONS: Dict[str, StopReason] = {
    "max_output_tokens": "max_tokens",
    "content_filter": "content_filter",
}


def responses_tool_choice(choice: ToolChoice) -> Any:
    if choice.mode is ToolChoiceMode.REQUIRED:
        return "required"
    if choice.mode is ToolChoiceMode.TOOL:
        return {"type": "function", "name": choice.name}
    if choice.mode is ToolChoiceMode.NONE:
        return "none"
    return "auto"


class OpenAIResponsesAdapter(BaseAdapter):
    """Responses API: typed ``input`` items in, typed ``output`` blocks out."""

    name = "openai"
    shape = "responses"
    default_model = "gpt-4o-mini"
    profile = OpenAIProfile()

    def request_path(self, conversation: Conversation, options: RequestOptions) -> str:
        return "responses"

    # -- canonical -> wire --------------------------------------------------

    def format_part(self, part: Any) -> Dict[str, Any]:
        if isinstance(part, TextPart):
            return {"type": "input_text", "text": part.text}
        if isinstance(part, ImagePart):
            url = part.as_data_url()
            if not url:
                raise UnsupportedContentError(f"{self.name}: image part has neither url nor data")
            return {"type": "input_image", "image_url": url, "detail": part.detail or "auto"}
        if isinstance(part, FilePart):
            if part.file_id:
                return {"type": "input_file", "file_id": part.file_id}
            if part.data:
                media_type = part.media_type or "application/pdf"
                return {
                    "type": "input_file",
                    "filename": part.filename or "document",
                    "file_data": f"data:{media_type};base64,{part.data}",
                }
            if part.url:
                return {"type": "input_file", "file_url": part.url}
        raise UnsupportedContentError(f"{self.name}: unsupported content part {part!r}")

    def format_input(self, message: Message) -> List[Dict[str, Any]]:
        if message.role == "tool":
            output: Any = message.text
            if message.has_media:
                output = [self.format_part(p) for p in message.parts]
            return [{"type": "function_call_output", "call_id": message.tool_call_id, "output": output}]
        if message.role == "assistant":
            items: List[Dict[str, Any]] = []
            text = self.text_only(message)
            if text:
                items.append(
                    {
                        "type": "message",
                        "role": "assistant",
                        "content": [{"type": "output_text", "text": text}],
                    }
                )
            for call in message.tool_calls or []:
                items.append(
                    {
                        "type": "function_call",
                        "call_id": call.id,
                        "name": call.name,
                        "arguments": call.arguments_json(),
                    }
                )
            return items
        return [
            {
                "type": "message",
                "role": message.role,
                "content": [self.format_part(p) for p in message.parts],
            }
        ]

    def build_body(self, conversation: Conversation, options: RequestOptions) -> Dict[str, Any]:
        items: List[Dict[str, Any]] = []
        for message in conversation.non_system_messages:
            items.extend(self.format_input(message))
        body: Dict[str, Any] = {"model": options.model, "input": items}
        instructions = self.system_text(conversation)
        if instructions:
            body["instructions"] = instructions
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body["max_output_tokens"] = options.max_tokens
        if conversation.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                }
                for tool in conversation.tools
            ]
            body["tool_choice"] = responses_tool_choice(options.tool_choice)
        schema = conversation.options.output_schema
        if schema is not None:
            fmt: Dict[str, Any] = {
                "type": "json_schema",
                "name": schema.name,
                "schema": schema.schema_,
                "strict": schema.strict,
            }
            if schema.description:
                fmt["description"] = schema.description
            body["text"] = {"format": fmt}
        if options.stream:
            body["stream"] = True
        return body

    # -- wire -> canonical --------------------------------------------------

    @staticmethod
    def parse_usage(raw: Optional[Dict[str, Any]]) -> Optional[Usage]:
        if not raw:
            return None
        return Usage.of(raw.get("input_tokens"), raw.get("output_tokens"), raw.get("total_tokens"))

    @staticmethod
    def stop_reason_for(response: Dict[str, Any], has_tool_calls: bool) -> StopReason:
        if has_tool_calls:
            return "tool_use"
        if response.get("status") == "incomplete":
            reason = (response.get("incomplete_details") or {}).get("reason") or ""
            return INCOMPLETE_REASONS.get(reason, "other")
        return "end_turn"

    def parse_payload(self, payload: Dict[str, Any], shape: str) -> Completion:
        if payload.get("status") == "failed":
            self._raise_failed(payload)
        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for item in payload.get("output") or []:
            kind = item.get("type")
            if kind == "message":
                for block in item.get("content") or []:
                    if block.get("type") == "output_text":
                        texts.append(block.get("text") or "")
                    elif block.get("type") == "refusal":
                        texts.append(block.get("refusal") or "")
            elif kind == "function_call":
                tool_calls.append(
                    ToolCall.from_raw(
                        item.get("call_id") or item.get("id") or f"call_{len(tool_calls)}",
                        item.get("name") or "",
                        item.get("arguments"),
                    )
                )
        message = Message(
            role="assistant",
            content="".join(texts),
            tool_calls=tool_calls or None,
            id=payload.get("id"),
        )
        return Completion(
            message=message,
            stop_reason=self.stop_reason_for(payload, bool(tool_calls)),
            usage=self.parse_usage(payload.get("usage")),
        )

    def _raise_failed(self, response: Dict[str, Any]) -> None:
        error = response.get("error") or {}
        raise ProviderApiError(
            error.get("message") or "Response failed",
            provider=self.name,
            category=str(error.get("code") or "server_error").lower(),
        )

    def parse_stream_chunk(self, raw_chunk: str, state: StreamState) -> Optional[StreamChunk]:
        if raw_chunk.strip() == "[DONE]":
            return StreamChunk(final=True)
        event = self.load_chunk(raw_chunk, state)
        kind = event.get("type", "")
        if kind == "error":
            raise ProviderApiError(
                event.get("message") or "Stream error",
                provider=self.name,
                category=str(event.get("code") or "server_error").lower(),
            )
        if kind == "response.failed":
            self._raise_failed(event.get("response") or {})
        if kind == "response.created":
            return StreamChunk(message_id=(event.get("response") or {}).get("id"))
        if kind == "response.output_text.delta":
            return StreamChunk(content_delta=event.get("delta") or "")
        if kind == "response.output_item.added":
            item = event.get("item") or {}
            if item.get("type") != "function_call":
                return None
            return StreamChunk(
                tool_calls=[
                    ToolCallDelta(
                        index=event.get("output_index"),
                        id=item.get("call_id") or item.get("id"),
                        name=item.get("name"),
                        arguments_delta=item.get("arguments") or "",
                    )
                ]
            )
        if kind == "response.function_call_arguments.delta":
            return StreamChunk(
                tool_calls=[
                    ToolCallDelta(
                        index=event.get("output_index"),
                        arguments_delta=event.get("delta") or "",
                    )
                ]
            )
        if kind in ("response.completed", "response.incomplete"):
            response = event.get("response") or {}
            return StreamChunk(
                message_id=response.get("id"),
                usage=self.parse_usage(response.get("usage")),
                stop_reason=self.stop_reason_for(response, bool(state.partial_tool_calls)),
                final=True,
            )
        return None


__all__ = ["responses_tool_choice", "OpenAIResponsesAdapter"]
