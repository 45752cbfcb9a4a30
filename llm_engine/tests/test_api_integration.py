"""
Live API integration tests: send one message per provider through the engine.

Run only when TEST_APIS=True in the environment and the provider's API key
variable (OPENAI_API_KEY, ANTHROPIC_API_KEY, GEMINI_API_KEY) is set.
"""

import os
from unittest import TestCase

from llm_engine import get_engine
from llm_engine.tests.utils import RecordingSink, require_test_apis
from llm_engine.types.config import ProviderConfig
from llm_engine.types.context import RunContext
from llm_engine.types.conversation import Conversation
from llm_engine.types.messages import Message


@require_test_apis()
class ProviderLiveAPITests(TestCase):
    """Send one message per provider and assert a valid response. Requires TEST_APIS=True."""

    def _config(self, provider: str, model: str, key_var: str) -> ProviderConfig:
        key = os.environ.get(key_var)
        if not key:
            self.skipTest(f"{key_var} is not set")
        return ProviderConfig(provider=provider, model=model, api_key=key)

    def _conversation(self) -> Conversation:
        return Conversation(messages=[Message(role="user", content="Reply with exactly the word OK and nothing else.")])

    def _run(self, config: ProviderConfig) -> str:
        response = get_engine().execute(self._conversation(), config, context=RunContext.create())
        self.assertEqual(response.message.role, "assistant")
        self.assertGreater(len(response.message.text.strip()), 0)
        return response.message.text

    def test_openai_returns_valid_response(self):
        """Call OpenAI (gpt-4o-mini) and assert a valid response."""
        content = self._run(self._config("openai", "gpt-4o-mini", "OPENAI_API_KEY"))
        self.assertIn("OK", content.upper())

    def test_anthropic_returns_valid_response(self):
        """Call Anthropic (claude-haiku-4-5-20251001) and assert a valid response."""
        content = self._run(self._config("anthropic", "claude-haiku-4-5-20251001", "ANTHROPIC_API_KEY"))
        self.assertIn("OK", content.upper())

    def test_gemini_returns_valid_response(self):
        """Call Gemini (gemini-2.0-flash) and assert a valid response."""
        content = self._run(self._config("gemini", "gemini-2.0-flash", "GEMINI_API_KEY"))
        self.assertIn("OK", content.upper())

    def test_openai_streaming_delivers_chunks(self):
        """Stream from OpenAI and assert chunks arrive before the final message."""
        config = self._config("openai", "gpt-4o-mini", "OPENAI_API_KEY")
        sink = RecordingSink()
        response = get_engine().execute_streaming(self._conversation(), config, sink)
        self.assertGreater(len(sink.deltas), 0)
        self.assertEqual(sink.final_count, 1)
        self.assertEqual("".join(sink.deltas), response.message.text)
