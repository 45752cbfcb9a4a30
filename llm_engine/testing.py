"""
Scripted backend for tests: queue replies, run the real engine, inspect requests.

    from llm_engine import Engine
    from llm_engine.testing import ScriptedBackend

    backend = ScriptedBackend(["Hello!"])
    engine = Engine(transports={"scripted": backend})
    response = engine.execute(conversation, ProviderConfig(provider="scripted"))
    backend.generations[0]  # the messages the engine sent

Chat replies are strings, Messages, Completions or exceptions (raised by
the transport); embedding replies are one vector or a list of vectors. An
empty queue answers with a fixed text (or one fixed vector per input).
"""

from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from llm_engine.core.interfaces import EMBEDDINGS_SHAPE, WireRequest, WireResponse
from llm_engine.core.providers.scripted import ScriptedAdapter
from llm_engine.service.errors import CancelledError
from llm_engine.types.context import CancellationToken
from llm_engine.types.messages import Message
from llm_engine.types.responses import Completion
from llm_engine.types.streaming import StreamChunk, ToolCallDelta

DEFAULT_REPLY = "Test response content"
DEFAULT_EMBEDDING = [0.1, 0.2, 0.3]

Reply = Union[str, Message, Completion, BaseException]
EmbeddingReply = Union[Sequence[float], Sequence[Sequence[float]], BaseException]


def _raise_if_cancelled(cancellation: Optional[CancellationToken]) -> None:
    if cancellation is not None and cancellation.cancelled:
        raise CancelledError("Run cancelled by caller")


def stream_chunks(completion: Completion) -> List[str]:
    """Serialize a completion as the chunk sequence a streaming backend would send."""
    message = completion.message
    chunks: List[StreamChunk] = []
    for piece in re.findall(r"\S+\s*|\s+", message.text):
        chunks.append(StreamChunk(content_delta=piece))
    for index, call in enumerate(message.tool_calls or []):
        chunks.append(
            StreamChunk(
                tool_calls=[
                    ToolCallDelta(index=index, id=call.id, name=call.name, arguments_delta=call.arguments_json())
                ]
            )
        )
    chunks.append(StreamChunk(stop_reason=completion.stop_reason, usage=completion.usage, final=True))
    if message.id:
        chunks[0].message_id = message.id
    return [chunk.model_dump_json() for chunk in chunks]


class ScriptedStream:
    status_code = 200

    def __init__(
        self,
        request: WireRequest,
        chunks: List[str],
        cancellation: Optional[CancellationToken],
    ) -> None:
        self._request = request
        self._chunks = chunks
        self._cancellation = cancellation
        self.closed = False

    def read(self) -> WireResponse:
        return WireResponse(provider=self._request.provider, status_code=200, shape=self._request.shape)

    def iter_chunks(self) -> Iterator[str]:
        for chunk in self._chunks:
            _raise_if_cancelled(self._cancellation)
            yield chunk


class ScriptedBackend:
    """Transport that answers ``scripted`` requests from queued replies. Thread-safe."""

    def __init__(
        self,
        replies: Optional[List[Reply]] = None,
        embeddings: Optional[List[EmbeddingReply]] = None,
        *,
        default_reply: str = DEFAULT_REPLY,
        default_embedding: Optional[List[float]] = None,
    ) -> None:
        self.replies: List[Reply] = list(replies or [])
        self.embeddings: List[EmbeddingReply] = list(embeddings or [])
        self.default_reply = default_reply
        self.default_embedding = list(default_embedding or DEFAULT_EMBEDDING)
        self.requests: List[WireRequest] = []
        self._lock = threading.Lock()

    # -- scripting ----------------------------------------------------------

    def queue(self, *replies: Reply) -> None:
        with self._lock:
            self.replies.extend(replies)

    def queue_embedding(self, *vectors: EmbeddingReply) -> None:
        with self._lock:
            self.embeddings.extend(vectors)

    def reset(self) -> None:
        """Forget queued replies and recorded requests."""
        with self._lock:
            self.replies.clear()
            self.embeddings.clear()
            self.requests.clear()

    @property
    def generations(self) -> List[List[Message]]:
        """Messages of every chat request received, oldest first."""
        return [
            [Message.model_validate(m) for m in request.body.get("messages", [])]
            for request in self.requests
            if request.shape != EMBEDDINGS_SHAPE
        ]

    # -- transport ----------------------------------------------------------

    def _record(self, request: WireRequest, cancellation: Optional[CancellationToken]) -> None:
        _raise_if_cancelled(cancellation)
        with self._lock:
            self.requests.append(request)

    def _next_completion(self) -> Completion:
        with self._lock:
            reply: Reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, Completion):
            return reply
        message = reply if isinstance(reply, Message) else Message(role="assistant", content=str(reply))
        return Completion(message=message, stop_reason="tool_use" if message.tool_calls else "end_turn")

    def _embedding_payload(self, request: WireRequest) -> Dict[str, Any]:
        inputs = request.body.get("input") or []
        with self._lock:
            reply = self.embeddings.pop(0) if self.embeddings else None
        if isinstance(reply, BaseException):
            raise reply
        if reply is None:
            vectors = [list(self.default_embedding) for _ in inputs]
        elif reply and isinstance(reply[0], (int, float)):
            vectors = [list(reply)]
        else:
            vectors = [list(vector) for vector in reply]
        return {"model": request.model, "embeddings": vectors}

    def send(self, request: WireRequest, cancellation: Optional[CancellationToken] = None) -> WireResponse:
        self._record(request, cancellation)
        if request.shape == EMBEDDINGS_SHAPE:
            data = self._embedding_payload(request)
        else:
            completion = self._next_completion()
            data = {
                "message": completion.message.model_dump(mode="json"),
                "stop_reason": completion.stop_reason,
                "usage": completion.usage.model_dump() if completion.usage else None,
            }
        return WireResponse(provider=request.provider, status_code=200, data=data, shape=request.shape)

    @contextmanager
    def open_stream(
        self, request: WireRequest, cancellation: Optional[CancellationToken] = None
    ) -> Iterator[ScriptedStream]:
        self._record(request, cancellation)
        stream = ScriptedStream(request, stream_chunks(self._next_completion()), cancellation)
        try:
            yield stream
        finally:
            stream.closed = True


__all__ = [
    "DEFAULT_REPLY",
    "DEFAULT_EMBEDDING",
    "ScriptedAdapter",
    "ScriptedBackend",
    "ScriptedStream",
    "stream_chunks",
]
