"""Tests for tiktoken-based usage estimation."""

from unittest import TestCase
from unittest.mock import MagicMock, patch

from llm_engine.service.usage import (
    MESSAGE_OVERHEAD_TOKENS,
    encoding_name_for_model,
    estimate_usage,
    message_text_for_counting,
)
from llm_engine.types.messages import Message, ToolCall


def _fake_encoding():
    encoding = MagicMock()
    encoding.encode.side_effect = lambda text: text.split()
    return encoding


class EncodingNameTests(TestCase):
    def test_model_families(self):
        self.assertEqual(encoding_name_for_model("gpt-4o-mini"), "o200k_base")
        self.assertEqual(encoding_name_for_model("openai/gpt-4o"), "o200k_base")
        self.assertEqual(encoding_name_for_model("o3-mini"), "o200k_base")
        self.assertEqual(encoding_name_for_model("gpt-4-turbo"), "cl100k_base")
        self.assertEqual(encoding_name_for_model("claude-3-5-sonnet"), "cl100k_base")
        self.assertEqual(encoding_name_for_model(None), "cl100k_base")


class EstimateUsageTests(TestCase):
    def test_counts_prompt_and_output(self):
        prompt = [Message(role="user", content="what is the weather")]
        output = Message(role="assistant", content="sunny and warm")
        with patch("llm_engine.service.usage._get_encoding", return_value=_fake_encoding()):
            usage = estimate_usage(prompt, output, "llama3.2")
        # "user\nwhat is the weather" splits into 5 words
        self.assertEqual(usage.prompt_tokens, 5 + MESSAGE_OVERHEAD_TOKENS)
        self.assertEqual(usage.completion_tokens, 4)
        self.assertEqual(usage.total_tokens, 9 + 4)
        self.assertTrue(usage.estimated)

    def test_tool_calls_are_counted(self):
        message = Message(role="assistant", tool_calls=[ToolCall(id="c", name="get_weather", arguments={"city": "Oslo"})])
        self.assertEqual(message_text_for_counting(message), 'assistant\nget_weather\n{"city": "Oslo"}')

    def test_encoding_failure_returns_none(self):
        with patch("llm_engine.service.usage._get_encoding", side_effect=ValueError("no encoding")):
            with self.assertLogs("llm_engine.service.usage", level="WARNING"):
                usage = estimate_usage([Message(role="user", content="hi")], Message(role="assistant", content="yo"))
        self.assertIsNone(usage)

    def test_uses_tiktoken_encoding_for_openai_models(self):
        fake_tiktoken = MagicMock()
        fake_tiktoken.encoding_for_model.return_value = _fake_encoding()
        with patch.dict("sys.modules", {"tiktoken": fake_tiktoken}):
            usage = estimate_usage([Message(role="user", content="hi")], Message(role="assistant", content="yo"), "gpt-4o")
        fake_tiktoken.encoding_for_model.assert_called_with("gpt-4o")
        self.assertEqual(usage.completion_tokens, 2)
