"""Test utilities for the llm_engine package."""

from __future__ import annotations

import json
import os
import unittest
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from llm_engine.core.interfaces import WireRequest, WireResponse
from llm_engine.types.context import CancellationToken, RunContext, ToolContext
from llm_engine.types.messages import Message, ToolCall


def require_test_apis(reason: str = "Set TEST_APIS=True in the environment to run live API tests."):
    """
    Decorator to skip a test unless TEST_APIS is set to True (case-insensitive).

    Use for tests that call real provider APIs (OpenAI, Anthropic, Gemini).
    """
    test_apis = os.environ.get("TEST_APIS", "").strip().lower() == "true"
    return unittest.skipUnless(test_apis, reason)


def json_response(payload: Any, status_code: int = 200) -> WireResponse:
    return WireResponse(status_code=status_code, text=json.dumps(payload))


def openai_text(content: str, *, finish_reason: str = "stop", usage: Optional[Dict[str, int]] = None) -> WireResponse:
    payload: Dict[str, Any] = {
        "id": "chatcmpl-1",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}],
    }
    if usage is not None:
        payload["usage"] = usage
    return json_response(payload)


def openai_tool_calls(*calls: Tuple[str, str, Dict[str, Any]], content: Optional[str] = None) -> WireResponse:
    """Chat completion whose message requests ``(id, name, arguments)`` calls."""
    return json_response(
        {
            "id": "chatcmpl-2",
            "choices": [
                {
                    "index": 0,
                    "message": {
                        "role": "assistant",
                        "content": content,
                        "tool_calls": [
                            {"id": cid, "type": "function", "function": {"name": name, "arguments": json.dumps(args)}}
                            for cid, name, args in calls
                        ],
                    },
                    "finish_reason": "tool_calls",
                }
            ],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        }
    )


def sse_events(*events: Any, done: bool = True) -> List[str]:
    """Framed SSE data payloads as the transport hands them to adapters."""
    chunks = [e if isinstance(e, str) else json.dumps(e) for e in events]
    if done:
        chunks.append("[DONE]")
    return chunks


class FakeStream:
    def __init__(self, chunks: Sequence[str], status_code: int = 200, text: str = "") -> None:
        self.chunks = list(chunks)
        self.status_code = status_code
        self.text = text
        self.request: Optional[WireRequest] = None
        self.closed = False

    def read(self) -> WireResponse:
        shape = self.request.shape if self.request else ""
        return WireResponse(status_code=self.status_code, text=self.text, shape=shape)

    def iter_chunks(self) -> Iterator[str]:
        yield from self.chunks


class ScriptedTransport:
    """
    Transport fake that replays scripted responses in order.

    ``responses`` feed ``send`` (WireResponse or an exception to raise);
    ``streams`` feed ``open_stream`` (a list of raw chunks or a FakeStream).
    """

    def __init__(self, responses: Optional[List[Any]] = None, streams: Optional[List[Any]] = None) -> None:
        self.responses = list(responses or [])
        self.streams = list(streams or [])
        self.requests: List[WireRequest] = []
        self.opened: List[FakeStream] = []

    def send(self, request: WireRequest, cancellation: Optional[CancellationToken] = None) -> WireResponse:
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item.model_copy(update={"provider": request.provider, "shape": request.shape})

    @contextmanager
    def open_stream(self, request: WireRequest, cancellation: Optional[CancellationToken] = None) -> Iterator[FakeStream]:
        self.requests.append(request)
        item = self.streams.pop(0)
        if isinstance(item, BaseException):
            raise item
        stream = item if isinstance(item, FakeStream) else FakeStream(item)
        stream.request = request
        self.opened.append(stream)
        try:
            yield stream
        finally:
            stream.closed = True


class RecordingSink:
    """Live-stream sink that records every (text so far, delta, is_final) call."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Optional[str], bool]] = []

    def __call__(self, message: Message, delta: Optional[str], is_final: bool) -> None:
        self.calls.append((message.text, delta, is_final))

    @property
    def deltas(self) -> List[str]:
        return [d for _, d, _ in self.calls if d]

    @property
    def final_count(self) -> int:
        return sum(1 for _, _, final in self.calls if final)


class WeatherTool:
    name = "get_weather"
    description = "Get the current weather for a city."
    parameters = {
        "type": "object",
        "properties": {"city": {"type": "string"}},
        "required": ["city"],
    }

    def __init__(self, result: Any = None) -> None:
        self.result = result if result is not None else {"tempC": 18}
        self.calls: List[Tuple[Dict[str, Any], ToolContext]] = []

    def run(self, args: Dict[str, Any], context: ToolContext) -> Any:
        self.calls.append((args, context))
        return self.result


class FailingTool:
    name = "explode"
    description = "Always fails."
    parameters = {"type": "object", "properties": {}}

    def run(self, args: Dict[str, Any], context: ToolContext) -> Any:
        raise RuntimeError("boom")


def tool_context(tool_call: ToolCall, iteration: int = 1) -> ToolContext:
    return ToolContext(run=RunContext.create(), tool_call=tool_call, iteration=iteration)
