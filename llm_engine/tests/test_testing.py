"""Tests for the scripted backend (llm_engine.testing) driven through the real Engine."""

import json
from unittest import TestCase

from llm_engine.core.registry import ProviderRegistry
from llm_engine.service.engine import Engine
from llm_engine.service.errors import CancelledError, ProviderApiError
from llm_engine.testing import DEFAULT_EMBEDDING, DEFAULT_REPLY, ScriptedBackend, stream_chunks
from llm_engine.tests.utils import RecordingSink, WeatherTool
from llm_engine.tools.registry import ToolRegistry
from llm_engine.types.config import ProviderConfig
from llm_engine.types.context import RunContext
from llm_engine.types.conversation import Conversation
from llm_engine.types.messages import Message, ToolCall
from llm_engine.types.responses import Completion, Usage

SCRIPTED = ProviderConfig(provider="scripted")


def _conversation(text="Hello"):
    return Conversation(messages=[Message(role="user", content=text)])


class ScriptedBackendTests(TestCase):
    def setUp(self):
        super().setUp()
        self.backend = ScriptedBackend()
        self.engine = Engine(registry=ProviderRegistry(), transports={"scripted": self.backend})

    def test_empty_queue_answers_with_default_reply(self):
        response = self.engine.execute(_conversation(), SCRIPTED)
        self.assertEqual(response.message.text, DEFAULT_REPLY)
        self.assertEqual(response.provider, "scripted")
        self.assertEqual(response.model, "scripted-model")
        self.assertEqual(self.backend.generations[0][0].text, "Hello")
        self.assertEqual(self.backend.requests[0].url, "scripted://scripted-model/generate")

    def test_replies_are_consumed_in_order(self):
        self.backend.queue("first", "second")
        self.assertEqual(self.engine.execute(_conversation(), SCRIPTED).message.text, "first")
        self.assertEqual(self.engine.execute(_conversation(), SCRIPTED).message.text, "second")
        self.assertEqual(self.engine.execute(_conversation(), SCRIPTED).message.text, DEFAULT_REPLY)

    def test_completion_reply_keeps_usage_and_stop_reason(self):
        self.backend.queue(
            Completion(
                message=Message(role="assistant", content="cut"),
                stop_reason="max_tokens",
                usage=Usage.of(7, 3),
            )
        )
        response = self.engine.execute(_conversation(), SCRIPTED)
        self.assertEqual(response.stop_reason, "max_tokens")
        self.assertEqual(response.usage.total_tokens, 10)

    def test_streaming_splits_reply_into_word_deltas(self):
        self.backend.queue("Hello there world")
        sink = RecordingSink()
        response = self.engine.execute_streaming(_conversation(), SCRIPTED, sink)
        self.assertEqual(sink.deltas, ["Hello ", "there ", "world"])
        self.assertEqual(response.message.text, "Hello there world")
        self.assertTrue(self.backend.requests[0].stream)

    def test_tool_round_trip(self):
        tools = ToolRegistry()
        weather = WeatherTool()
        tools.register_tool(weather)
        call = ToolCall(id="call_1", name="get_weather", arguments={"city": "Oslo"})
        self.backend.queue(Message(role="assistant", content="", tool_calls=[call]), "18C in Oslo")
        conversation = _conversation("Weather in Oslo?")
        response = self.engine.execute(conversation, SCRIPTED, executor=tools)
        self.assertEqual(response.message.text, "18C in Oslo")
        self.assertEqual(weather.calls[0][0], {"city": "Oslo"})
        second = self.backend.generations[1]
        self.assertEqual([m.role for m in second], ["user", "assistant", "tool"])
        self.assertEqual(second[2].tool_call_id, "call_1")

    def test_streamed_tool_call_is_merged(self):
        tools = ToolRegistry()
        tools.register_tool(WeatherTool())
        call = ToolCall(id="call_9", name="get_weather", arguments={"city": "Bergen"})
        self.backend.queue(Message(role="assistant", content="", tool_calls=[call]), "Rainy")
        response = self.engine.execute_streaming(_conversation(), SCRIPTED, RecordingSink(), executor=tools)
        self.assertEqual(response.message.text, "Rainy")
        self.assertEqual(self.backend.generations[1][1].tool_calls[0].id, "call_9")

    def test_queued_exception_is_raised(self):
        error = ProviderApiError("overloaded", provider="scripted", status_code=529, category="overloaded")
        self.backend.queue(error)
        with self.assertRaises(ProviderApiError) as ctx:
            self.engine.execute(_conversation(), SCRIPTED)
        self.assertIs(ctx.exception, error)

    def test_cancelled_run_is_not_recorded(self):
        context = RunContext.create()
        context.cancellation.cancel()
        with self.assertRaises(CancelledError):
            self.engine.execute(_conversation(), SCRIPTED, context=context)
        self.assertEqual(self.backend.requests, [])

    def test_embed_defaults_one_vector_per_input(self):
        response = self.engine.embed(["a", "b"], SCRIPTED)
        self.assertEqual(response.vectors, [DEFAULT_EMBEDDING, DEFAULT_EMBEDDING])
        self.assertEqual(response.model, "scripted-embedding")
        self.assertEqual(self.backend.generations, [])

    def test_embed_queued_flat_vector(self):
        self.backend.queue_embedding([1.0, 2.0])
        response = self.engine.embed("a", SCRIPTED, dimensions=2)
        self.assertEqual(response.vector, [1.0, 2.0])
        self.assertEqual(self.backend.requests[0].body["dimensions"], 2)

    def test_reset_clears_queue_and_history(self):
        self.backend.queue("unused")
        self.engine.execute(_conversation(), SCRIPTED)
        self.backend.queue("unused")
        self.backend.reset()
        self.assertEqual(self.backend.requests, [])
        self.assertEqual(self.engine.execute(_conversation(), SCRIPTED).message.text, DEFAULT_REPLY)

    def test_engine_creates_backend_for_scripted_transport(self):
        engine = Engine(registry=ProviderRegistry())
        self.assertEqual(engine.execute(_conversation(), SCRIPTED).message.text, DEFAULT_REPLY)


class StreamChunksTests(TestCase):
    def test_chunk_sequence_ends_with_terminal_chunk(self):
        completion = Completion(message=Message(role="assistant", content="Hi you", id="msg_1"), stop_reason="end_turn")
        chunks = [json.loads(c) for c in stream_chunks(completion)]
        self.assertEqual([c["content_delta"] for c in chunks[:2]], ["Hi ", "you"])
        self.assertEqual(chunks[0]["message_id"], "msg_1")
        self.assertTrue(chunks[-1]["final"])
        self.assertEqual(chunks[-1]["stop_reason"], "end_turn")
