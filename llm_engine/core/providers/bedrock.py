from __future__ import annotations

import base64
import json
from typing import Any, Dict, Optional, Tuple

from llm_engine.core.profiles import BedrockProfile
from llm_engine.core.providers.anthropic import AnthropicAdapter
from llm_engine.service.errors import ProviderApiError
from llm_engine.types.streaming import StreamState


class BedrockAdapter(AnthropicAdapter):
    """
    Anthropic models on AWS Bedrock. Bodies and events are Anthropic's;
    streamed events arrive base64-wrapped inside event-stream ``chunk``
    frames.
    """

    name = "bedrock"
    default_model = "anthropic.claude-3-5-sonnet-20240620-v1:0"
    profile = BedrockProfile()

    def error_details(self, payload: Any) -> Optional[Tuple[str, Optional[str], Optional[int]]]:
        details = super().error_details(payload)
        if details is None and isinstance(payload, dict) and isinstance(payload.get("message"), str):
            return payload["message"], None, None
        return details

    def decode_stream_event(self, raw_chunk: str, state: StreamState) -> Dict[str, Any]:
        frame = self.load_chunk(raw_chunk, state)
        if "bytes" not in frame:
            return frame
        try:
            event = json.loads(base64.b64decode(frame["bytes"]).decode("utf-8"))
        except ValueError as exc:
            raise ProviderApiError(
                "Malformed Bedrock stream chunk",
                provider=self.name,
                category="malformed_stream",
            ) from exc
        state.scratch["last_event"] = event
        return event


__all__ = ["BedrockAdapter"]
