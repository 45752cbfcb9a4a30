"""Tests for EventEmittingEngine lifecycle events."""

import asyncio
from unittest import TestCase
from unittest.mock import MagicMock

from llm_engine.core.registry import ProviderRegistry
from llm_engine.service.engine import Engine
from llm_engine.service.errors import ProviderApiError
from llm_engine.service.middleware import EventEmittingEngine, LifecycleEvent
from llm_engine.tests.utils import RecordingSink, ScriptedTransport, json_response, openai_text, sse_events
from llm_engine.types.config import ProviderConfig
from llm_engine.types.context import RunContext
from llm_engine.types.conversation import Conversation
from llm_engine.types.messages import Message


def _conversation():
    return Conversation(messages=[Message(role="user", content="Hello")])


def _config():
    return ProviderConfig(provider="openai", model="gpt-4o-mini", api_key="sk-test")


class EventEmittingEngineTests(TestCase):
    def _inner(self, transport):
        return Engine(registry=ProviderRegistry(), transports={"http": transport})

    def test_start_and_finish_events_wrap_execute(self):
        events = []
        engine = EventEmittingEngine(self._inner(ScriptedTransport([openai_text("Hi")])), listeners=[events.append])
        context = RunContext.create()
        response = engine.execute(_conversation(), _config(), context=context)
        self.assertEqual([e.kind for e in events], ["start", "finish"])
        self.assertTrue(all(e.run_id == context.run_id for e in events))
        self.assertIs(events[1].response, response)
        self.assertIsNotNone(events[1].duration_ms)
        self.assertFalse(events[0].is_stream)

    def test_embed_passes_through_without_events(self):
        events = []
        inner = MagicMock()
        engine = EventEmittingEngine(inner, listeners=[events.append])
        result = engine.embed(["a"], _config(), model="text-embedding-3-large", dimensions=8)
        self.assertIs(result, inner.embed.return_value)
        inner.embed.assert_called_once_with(
            ["a"], _config(), model="text-embedding-3-large", dimensions=8, context=None
        )
        self.assertEqual(events, [])

    def test_error_event_is_emitted_and_error_propagates(self):
        events = []
        error = json_response({"error": {"message": "down", "type": "server_error"}}, 500)
        engine = EventEmittingEngine(self._inner(ScriptedTransport([error])), listeners=[events.append])
        with self.assertRaises(ProviderApiError):
            engine.execute(_conversation(), _config())
        self.assertEqual([e.kind for e in events], ["start", "error"])
        self.assertIsInstance(events[1].error, ProviderApiError)

    def test_streaming_is_delegated_with_sink(self):
        events = []
        chunks = sse_events(
            {"choices": [{"index": 0, "delta": {"content": "Yo"}}]},
            {"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
        )
        engine = EventEmittingEngine(self._inner(ScriptedTransport(streams=[chunks])))
        engine.add_listener(events.append)
        sink = RecordingSink()
        response = engine.execute_streaming(_conversation(), _config(), sink)
        self.assertEqual(response.message.text, "Yo")
        self.assertEqual(sink.deltas, ["Yo"])
        self.assertTrue(events[0].is_stream)

    def test_failing_listener_does_not_break_the_run(self):
        def bad_listener(event):
            raise RuntimeError("listener bug")

        good = []
        engine = EventEmittingEngine(
            self._inner(ScriptedTransport([openai_text("Hi")])), listeners=[bad_listener, good.append]
        )
        with self.assertLogs("llm_engine.service.middleware", level="ERROR"):
            response = engine.execute(_conversation(), _config())
        self.assertEqual(response.message.text, "Hi")
        self.assertEqual(len(good), 2)

    def test_wrappers_compose(self):
        outer_events, inner_events = [], []
        inner = EventEmittingEngine(self._inner(ScriptedTransport([openai_text("Hi")])), listeners=[inner_events.append])
        outer = EventEmittingEngine(inner, listeners=[outer_events.append])
        outer.execute(_conversation(), _config())
        self.assertEqual([e.kind for e in outer_events], ["start", "finish"])
        self.assertEqual([e.kind for e in inner_events], ["start", "finish"])
        self.assertEqual(outer_events[0].run_id, inner_events[0].run_id)

    def test_wraps_any_engine_with_the_execute_contract(self):
        inner = MagicMock()
        inner.execute.side_effect = KeyError("missing")
        events = []
        engine = EventEmittingEngine(inner, listeners=[events.append])
        with self.assertRaises(KeyError):
            engine.execute(_conversation(), _config())
        self.assertEqual(events[-1].kind, "error")

    def test_async_wrapper_emits_events(self):
        events = []
        engine = EventEmittingEngine(self._inner(ScriptedTransport([openai_text("Hi")])), listeners=[events.append])
        response = asyncio.run(engine.aexecute(_conversation(), _config()))
        self.assertEqual(response.message.text, "Hi")
        self.assertEqual([e.kind for e in events], ["start", "finish"])
        self.assertIsInstance(events[0], LifecycleEvent)
