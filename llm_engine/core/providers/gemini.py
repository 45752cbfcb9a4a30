"""Google Gemini ``generateContent`` wire format."""

from __future__ import annotations

import hashlib
import json
import mimetypes
from typing import Any, Dict, List, Optional, Tuple

from llm_engine.core.interfaces import Capabilities, RequestOptions
from llm_engine.core.profiles import GeminiProfile
from llm_engine.core.providers.base import BaseAdapter
from llm_engine.service.errors import ProviderApiError, UnsupportedContentError
from llm_engine.types.conversation import Conversation, ToolChoiceMode
from llm_engine.types.messages import FilePart, ImagePart, Message, TextPart, ToolCall
from llm_engine.types.responses import Completion, StopReason, Usage
from llm_engine.types.streaming import StreamChunk, StreamState, ToolCallDelta

FINISH_REASONS: Dict[str, StopReason] = {
    "STOP": "end_turn",
    "MAX_TOKENS": "max_tokens",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
    "BLOCKLIST": "content_filter",
    "PROHIBITED_CONTENT": "content_filter",
    "SPII": "content_filter",
}

TOOL_MODES = {
    ToolChoiceMode.AUTO: "AUTO",
    ToolChoiceMode.REQUIRED: "ANY",
    ToolChoiceMode.TOOL: "ANY",
    ToolChoiceMode.NONE: "NONE",
}


def synthesize_call_id(response_key: str, position: int) -> str:
    """Gemini does not assign call ids; derive a stable one from the response."""
    return f"call_{response_key}_{position}"


def response_key(payload: Dict[str, Any], raw: str = "") -> str:
    key = payload.get("responseId")
    if key:
        return str(key)
    source = raw or json.dumps(payload, sort_keys=True)
    return hashlib.sha1(source.encode("utf-8")).hexdigest()[:12]


def _guess_mime(url: Optional[str], fallback: str) -> str:
    if url:
        guessed, _ = mimetypes.guess_type(url)
        if guessed:
            return guessed
    return fallback


class GeminiAdapter(BaseAdapter):
    """Gemini: ``contents`` of ``user``/``model`` turns built from typed parts."""

    name = "gemini"
    shape = "contents"
    default_model = "gemini-2.0-flash"
    default_embedding_model = "text-embedding-004"
    profile = GeminiProfile()
    default_capabilities = Capabilities(embeddings=True)

    # -- canonical -> wire --------------------------------------------------

    def format_part(self, part: Any) -> Dict[str, Any]:
        if isinstance(part, TextPart):
            return {"text": part.text}
        if isinstance(part, ImagePart):
            inline = part.inline()
            if inline:
                media_type, data = inline
                return {"inlineData": {"mimeType": media_type, "data": data}}
            if part.url:
                return {"fileData": {"mimeType": part.media_type or _guess_mime(part.url, "image/jpeg"), "fileUri": part.url}}
        if isinstance(part, FilePart):
            media_type = part.media_type or _guess_mime(part.filename or part.url, "application/pdf")
            if part.data:
                return {"inlineData": {"mimeType": media_type, "data": part.data}}
            if part.url or part.file_id:
                return {"fileData": {"mimeType": media_type, "fileUri": part.url or part.file_id}}
        raise UnsupportedContentError(f"{self.name}: unsupported content part {part!r}")

    @staticmethod
    def function_response(message: Message) -> Dict[str, Any]:
        try:
            parsed = json.loads(message.text)
        except ValueError:
            parsed = message.text
        return parsed if isinstance(parsed, dict) else {"result": parsed}

    def format_turn(self, message: Message, conversation: Conversation) -> Dict[str, Any]:
        if message.role == "tool":
            name = conversation.tool_call_name(message.tool_call_id or "") or message.name or ""
            response_parts = [{"functionResponse": {"name": name, "response": self.function_response(message)}}]
            response_parts.extend(self.format_part(p) for p in message.parts if not isinstance(p, TextPart))
            return {"role": "user", "parts": response_parts}
        parts = [self.format_part(p) for p in message.parts]
        for call in message.tool_calls or []:
            parts.append({"functionCall": {"name": call.name, "args": call.arguments}})
        return {"role": "model" if message.role == "assistant" else "user", "parts": parts}

    def build_body(self, conversation: Conversation, options: RequestOptions) -> Dict[str, Any]:
        contents: List[Dict[str, Any]] = []
        for message in conversation.non_system_messages:
            turn = self.format_turn(message, conversation)
            if not turn["parts"]:
                continue
            if contents and contents[-1]["role"] == turn["role"]:
                contents[-1]["parts"].extend(turn["parts"])
            else:
                contents.append(turn)
        body: Dict[str, Any] = {"contents": contents}
        system = self.system_text(conversation)
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if conversation.tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {"name": t.name, "description": t.description, "parameters": t.parameters}
                        for t in conversation.tools
                    ]
                }
            ]
            choice = options.tool_choice
            config: Dict[str, Any] = {"mode": TOOL_MODES[choice.mode]}
            if choice.mode is ToolChoiceMode.TOOL:
                config["allowedFunctionNames"] = [choice.name]
            body["toolConfig"] = {"functionCallingConfig": config}
        generation: Dict[str, Any] = {}
        if options.temperature is not None:
            generation["temperature"] = options.temperature
        if options.max_tokens is not None:
            generation["maxOutputTokens"] = options.max_tokens
        schema = conversation.options.output_schema
        if schema is not None:
            generation["responseMimeType"] = "application/json"
            generation["responseSchema"] = schema.schema_
        if generation:
            body["generationConfig"] = generation
        return body

    # -- wire -> canonical --------------------------------------------------

    @staticmethod
    def parse_usage(raw: Optional[Dict[str, Any]]) -> Optional[Usage]:
        if not raw:
            return None
        return Usage.of(
            raw.get("promptTokenCount"),
            raw.get("candidatesTokenCount"),
            raw.get("totalTokenCount"),
        )

    @staticmethod
    def candidate_parts(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        candidates = payload.get("candidates") or []
        if not candidates:
            return []
        return (candidates[0].get("content") or {}).get("parts") or []

    @staticmethod
    def finish_reason(payload: Dict[str, Any]) -> Optional[str]:
        candidates = payload.get("candidates") or []
        return candidates[0].get("finishReason") if candidates else None

    def parse_payload(self, payload: Dict[str, Any], shape: str) -> Completion:
        if not payload.get("candidates"):
            block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                return Completion(
                    message=Message(role="assistant", content="", id=payload.get("responseId")),
                    stop_reason="content_filter",
                    usage=self.parse_usage(payload.get("usageMetadata")),
                )
            raise ProviderApiError(
                "Gemini response has no candidates",
                provider=self.name,
                category="malformed_response",
            )
        key = response_key(payload)
        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for part in self.candidate_parts(payload):
            if part.get("thought"):
                continue
            if "text" in part:
                texts.append(part["text"])
            elif "functionCall" in part:
                call = part["functionCall"]
                tool_calls.append(
                    ToolCall.from_raw(
                        call.get("id") or synthesize_call_id(key, len(tool_calls)),
                        call.get("name") or "",
                        call.get("args"),
                    )
                )
        reason = self.finish_reason(payload)
        stop_reason: StopReason = "tool_use" if tool_calls else FINISH_REASONS.get(reason or "", "other")
        message = Message(
            role="assistant",
            content="".join(texts),
            tool_calls=tool_calls or None,
            id=payload.get("responseId"),
        )
        return Completion(message=message, stop_reason=stop_reason, usage=self.parse_usage(payload.get("usageMetadata")))

    def parse_stream_chunk(self, raw_chunk: str, state: StreamState) -> Optional[StreamChunk]:
        event = self.load_chunk(raw_chunk, state)
        self.raise_for_payload_error(event)
        if "response_key" not in state.scratch:
            state.scratch["response_key"] = response_key(event, raw_chunk)
            state.scratch["call_count"] = 0
        chunk = StreamChunk(
            message_id=event.get("responseId"),
            usage=self.parse_usage(event.get("usageMetadata")),
        )
        texts: List[str] = []
        for part in self.candidate_parts(event):
            if part.get("thought"):
                continue
            if "text" in part:
                texts.append(part["text"])
            elif "functionCall" in part:
                call = part["functionCall"]
                position = state.scratch["call_count"]
                state.scratch["call_count"] = position + 1
                chunk.tool_calls.append(
                    ToolCallDelta(
                        id=call.get("id") or synthesize_call_id(state.scratch["response_key"], position),
                        name=call.get("name") or "",
                        arguments_delta=json.dumps(call.get("args") or {}),
                    )
                )
        if texts:
            chunk.content_delta = "".join(texts)
        reason = self.finish_reason(event)
        if reason:
            chunk.stop_reason = "tool_use" if (chunk.tool_calls or state.partial_tool_calls) else FINISH_REASONS.get(reason, "other")
            chunk.final = True
        elif not event.get("candidates") and (event.get("promptFeedback") or {}).get("blockReason"):
            chunk.stop_reason = "content_filter"
            chunk.final = True
        return chunk

    # -- embeddings ---------------------------------------------------------

    def build_embedding_body(self, inputs: List[str], model: str, dimensions: Optional[int]) -> Dict[str, Any]:
        name = model if model.startswith("models/") else f"models/{model}"
        requests = []
        for text in inputs:
            item: Dict[str, Any] = {"model": name, "content": {"parts": [{"text": text}]}}
            if dimensions is not None:
                item["outputDimensionality"] = dimensions
            requests.append(item)
        return {"requests": requests}

    def parse_embedding_payload(self, payload: Dict[str, Any]) -> Tuple[List[List[float]], Optional[Usage]]:
        embeddings = payload.get("embeddings")
        if not embeddings:
            raise ProviderApiError(
                "Gemini embedding response has no embeddings",
                provider=self.name,
                category="malformed_response",
            )
        return [[float(v) for v in item.get("values") or []] for item in embeddings], None


__all__ = ["synthesize_call_id", "response_key", "GeminiAdapter"]
