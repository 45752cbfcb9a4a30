"""Tests for the Gemini and Ollama adapters."""

import json
from unittest import TestCase

from llm_engine.core.interfaces import RequestOptions
from llm_engine.core.providers.gemini import GeminiAdapter, response_key, synthesize_call_id
from llm_engine.core.providers.ollama import OllamaAdapter
from llm_engine.service.errors import ProviderApiError, UnsupportedContentError
from llm_engine.tests.utils import json_response
from llm_engine.types.config import ProviderConfig
from llm_engine.types.conversation import (
    Conversation,
    GenerationOptions,
    OutputSchema,
    ToolChoice,
    ToolDefinition,
)
from llm_engine.types.messages import FilePart, ImagePart, Message, TextPart, ToolCall

GEMINI = ProviderConfig(provider="gemini", model="gemini-2.0-flash", api_key="g-key")
OLLAMA = ProviderConfig(provider="ollama", model="llama3.2")
WEATHER = ToolDefinition(name="get_weather", parameters={"type": "object", "properties": {"city": {"type": "string"}}})


def _history():
    return [
        Message(role="system", content="Short answers."),
        Message(role="user", content="Weather in Oslo?"),
        Message(role="assistant", content="", tool_calls=[ToolCall(id="call_a", name="get_weather", arguments={"city": "Oslo"})]),
        Message(role="tool", tool_call_id="call_a", content='{"tempC": 5}'),
    ]


def _stream(adapter, request, events):
    state = adapter.start_stream(request)
    deltas = []
    for event in events:
        state, delta, _ = adapter.process_stream_chunk(json.dumps(event), state)
        if delta:
            deltas.append(delta)
    return adapter.finish_stream(state), deltas


class GeminiRequestTests(TestCase):
    def setUp(self):
        self.adapter = GeminiAdapter()

    def test_body_and_addressing(self):
        conversation = Conversation(
            messages=_history(),
            tools=[WEATHER],
            options=GenerationOptions(temperature=0.1, max_tokens=64, tool_choice=ToolChoice.tool("get_weather")),
        )
        request = self.adapter.build_request(conversation, RequestOptions.resolve(conversation, GEMINI))
        self.assertEqual(
            request.url,
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent",
        )
        self.assertEqual(request.headers["x-goog-api-key"], "g-key")
        body = request.body
        self.assertEqual(body["systemInstruction"], {"parts": [{"text": "Short answers."}]})
        self.assertEqual([c["role"] for c in body["contents"]], ["user", "model", "user"])
        self.assertEqual(body["contents"][1]["parts"], [{"functionCall": {"name": "get_weather", "args": {"city": "Oslo"}}}])
        self.assertEqual(
            body["contents"][2]["parts"],
            [{"functionResponse": {"name": "get_weather", "response": {"tempC": 5}}}],
        )
        self.assertEqual(
            body["toolConfig"],
            {"functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": ["get_weather"]}},
        )
        self.assertEqual(body["generationConfig"], {"temperature": 0.1, "maxOutputTokens": 64})

    def test_streaming_path_and_schema(self):
        conversation = Conversation(
            messages=[
                Message(
                    role="user",
                    content=[
                        TextPart(text="Read"),
                        ImagePart(data="aWk=", media_type="image/webp"),
                        FilePart(url="gs://bucket/doc.pdf"),
                    ],
                )
            ],
            options=GenerationOptions(output_schema=OutputSchema(name="x", schema={"type": "object"})),
        )
        request = self.adapter.build_request(conversation, RequestOptions.resolve(conversation, GEMINI, stream=True))
        self.assertTrue(request.url.endswith("models/gemini-2.0-flash:streamGenerateContent"))
        self.assertEqual(request.params["alt"], "sse")
        parts = request.body["contents"][0]["parts"]
        self.assertEqual(parts[1], {"inlineData": {"mimeType": "image/webp", "data": "aWk="}})
        self.assertEqual(parts[2], {"fileData": {"mimeType": "application/pdf", "fileUri": "gs://bucket/doc.pdf"}})
        self.assertEqual(request.body["generationConfig"]["responseMimeType"], "application/json")

    def test_plain_text_tool_result_is_wrapped(self):
        conversation = Conversation(messages=_history()[:3] + [Message(role="tool", tool_call_id="call_a", content="sunny")])
        body = self.adapter.build_request(conversation, RequestOptions.resolve(conversation, GEMINI)).body
        self.assertEqual(body["contents"][-1]["parts"][0]["functionResponse"]["response"], {"result": "sunny"})


class GeminiResponseTests(TestCase):
    def setUp(self):
        self.adapter = GeminiAdapter()

    def test_function_calls_get_stable_synthesized_ids(self):
        payload = {
            "responseId": "r-1",
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"functionCall": {"name": "get_weather", "args": {"city": "Oslo"}}},
                            {"functionCall": {"name": "get_weather", "args": {"city": "Rome"}}},
                        ]
                    },
                    "finishReason": "STOP",
                }
            ],
            "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 6, "totalTokenCount": 10},
        }
        first = self.adapter.parse_response(json_response(payload))
        second = self.adapter.parse_response(json_response(payload))
        ids = [c.id for c in first.message.tool_calls]
        self.assertEqual(ids, [synthesize_call_id("r-1", 0), synthesize_call_id("r-1", 1)])
        self.assertEqual(ids, [c.id for c in second.message.tool_calls])
        self.assertEqual(first.stop_reason, "tool_use")
        self.assertEqual(first.usage.total_tokens, 10)

    def test_response_key_without_id_is_content_hash(self):
        self.assertEqual(response_key({"a": 1}), response_key({"a": 1}))
        self.assertNotEqual(response_key({"a": 1}), response_key({"a": 2}))

    def test_blocked_prompt_is_content_filter(self):
        completion = self.adapter.parse_response(json_response({"promptFeedback": {"blockReason": "SAFETY"}}))
        self.assertEqual(completion.stop_reason, "content_filter")
        self.assertEqual(completion.message.text, "")

    def test_error_status(self):
        with self.assertRaises(ProviderApiError) as ctx:
            self.adapter.parse_response(
                json_response({"error": {"code": 400, "message": "API key not valid", "status": "INVALID_ARGUMENT"}}, 400)
            )
        self.assertEqual(ctx.exception.category, "invalid_argument")
        self.assertEqual(ctx.exception.status_code, 400)

    def test_stream_text_then_finish(self):
        conversation = Conversation(messages=[Message(role="user", content="x")])
        request = self.adapter.build_request(conversation, RequestOptions.resolve(conversation, GEMINI, stream=True))
        completion, deltas = _stream(
            self.adapter,
            request,
            [
                {"responseId": "r-9", "candidates": [{"content": {"parts": [{"text": "Hel"}]}}]},
                {"responseId": "r-9", "candidates": [{"content": {"parts": [{"thought": True, "text": "hmm"}, {"text": "lo"}]}}]},
                {
                    "responseId": "r-9",
                    "candidates": [{"content": {"parts": [{"functionCall": {"name": "f", "args": {"k": 1}}}]}, "finishReason": "STOP"}],
                    "usageMetadata": {"promptTokenCount": 2, "candidatesTokenCount": 3},
                },
            ],
        )
        self.assertEqual(deltas, ["Hel", "lo"])
        self.assertEqual(completion.message.tool_calls[0].id, "call_r-9_0")
        self.assertEqual(completion.message.tool_calls[0].arguments, {"k": 1})
        self.assertEqual(completion.stop_reason, "tool_use")
        self.assertEqual(completion.usage.total_tokens, 5)


class OllamaTests(TestCase):
    def setUp(self):
        self.adapter = OllamaAdapter()

    def test_request_body(self):
        conversation = Conversation(
            messages=_history() + [Message(role="user", content=[TextPart(text="and this?"), ImagePart(data="aWk=")])],
            tools=[WEATHER],
            options=GenerationOptions(temperature=0.5, max_tokens=32, output_schema=OutputSchema(schema={"type": "object"})),
        )
        request = self.adapter.build_request(conversation, RequestOptions.resolve(conversation, OLLAMA))
        self.assertEqual(request.url, "http://localhost:11434/api/chat")
        self.assertNotIn("Authorization", request.headers)
        body = request.body
        self.assertIs(body["stream"], False)
        self.assertEqual(body["messages"][2]["tool_calls"], [{"function": {"name": "get_weather", "arguments": {"city": "Oslo"}}}])
        self.assertEqual(body["messages"][3]["tool_name"], "get_weather")
        self.assertEqual(body["messages"][4], {"role": "user", "content": "and this?", "images": ["aWk="]})
        self.assertEqual(body["tools"][0]["function"]["name"], "get_weather")
        self.assertEqual(body["format"], {"type": "object"})
        self.assertEqual(body["options"], {"temperature": 0.5, "num_predict": 32})

    def test_tool_choice_none_drops_tools(self):
        conversation = Conversation(
            messages=[Message(role="user", content="hi")],
            tools=[WEATHER],
            options=GenerationOptions(tool_choice=ToolChoice.none()),
        )
        body = self.adapter.build_request(conversation, RequestOptions.resolve(conversation, OLLAMA)).body
        self.assertNotIn("tools", body)

    def test_image_urls_are_unsupported(self):
        conversation = Conversation(messages=[Message(role="user", content=[ImagePart(url="https://x/a.png")])])
        with self.assertRaises(UnsupportedContentError):
            self.adapter.build_request(conversation, RequestOptions.resolve(conversation, OLLAMA))

    def test_parse_response(self):
        completion = self.adapter.parse_response(
            json_response(
                {
                    "created_at": "2024-07-01T10:00:00Z",
                    "message": {
                        "role": "assistant",
                        "content": "",
                        "tool_calls": [{"function": {"name": "get_weather", "arguments": {"city": "Oslo"}}}],
                    },
                    "done": True,
                    "done_reason": "stop",
                    "prompt_eval_count": 11,
                    "eval_count": 4,
                }
            )
        )
        self.assertEqual(completion.message.tool_calls[0].id, "call_20240701T100000Z_0")
        self.assertEqual(completion.stop_reason, "tool_use")
        self.assertEqual(completion.usage.total_tokens, 15)

    def test_ndjson_stream(self):
        conversation = Conversation(messages=[Message(role="user", content="x")])
        request = self.adapter.build_request(conversation, RequestOptions.resolve(conversation, OLLAMA, stream=True))
        self.assertEqual(request.framing, "ndjson")
        completion, deltas = _stream(
            self.adapter,
            request,
            [
                {"created_at": "t1", "message": {"role": "assistant", "content": "Hi"}, "done": False},
                {"created_at": "t1", "message": {"role": "assistant", "content": " there"}, "done": False},
                {"created_at": "t1", "message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "length", "prompt_eval_count": 1, "eval_count": 2},
            ],
        )
        self.assertEqual(deltas, ["Hi", " there"])
        self.assertEqual(completion.message.text, "Hi there")
        self.assertEqual(completion.stop_reason, "max_tokens")
        self.assertEqual(completion.usage.total_tokens, 3)

    def test_error_line(self):
        conversation = Conversation(messages=[Message(role="user", content="x")])
        request = self.adapter.build_request(conversation, RequestOptions.resolve(conversation, OLLAMA, stream=True))
        with self.assertRaises(ProviderApiError) as ctx:
            _stream(self.adapter, request, [{"error": "model 'nope' not found"}])
        self.assertIn("not found", ctx.exception.message)


class GeminiMediaPlacementTests(TestCase):
    def setUp(self):
        self.adapter = GeminiAdapter()

    def test_image_in_system_instruction_is_rejected(self):
        conversation = Conversation(
            messages=[
                Message(role="system", content=[TextPart(text="sys"), ImagePart(url="https://x/logo.png")]),
                Message(role="user", content="Hi"),
            ]
        )
        with self.assertRaises(UnsupportedContentError):
            self.adapter.build_request(conversation, RequestOptions.resolve(conversation, GEMINI))

    def test_tool_result_media_follows_function_response(self):
        history = _history()
        history[-1] = Message(
            role="tool",
            tool_call_id="call_a",
            content=[TextPart(text='{"ok": true}'), ImagePart(url="https://x/chart.png")],
        )
        conversation = Conversation(messages=history)
        body = self.adapter.build_request(conversation, RequestOptions.resolve(conversation, GEMINI)).body
        parts = body["contents"][-1]["parts"]
        self.assertEqual(parts[0], {"functionResponse": {"name": "get_weather", "response": {"ok": True}}})
        self.assertEqual(parts[1], {"fileData": {"mimeType": "image/png", "fileUri": "https://x/chart.png"}})
