"""
Lifecycle middleware: wraps an engine and emits start / finish / error events.

    events = []
    engine = EventEmittingEngine(get_engine(), listeners=[events.append])
    engine.execute(conversation, config)

Wrappers compose: an ``EventEmittingEngine`` can wrap another one. A listener
that raises is logged and skipped; it never breaks the run.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field

from llm_engine.pipelines.tool_loop import ChunkSink
from llm_engine.service.engine import AsyncEngineMixin
from llm_engine.tools.interfaces import ToolExecutor
from llm_engine.types.config import ProviderConfig
from llm_engine.types.context import RunContext
from llm_engine.types.conversation import Conversation
from llm_engine.types.embeddings import EmbeddingResponse
from llm_engine.types.responses import Response

logger = logging.getLogger(__name__)

EventKind = Literal["start", "finish", "error"]


class LifecycleEvent(BaseModel):
    """One start/finish/error notification around an execute call."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: EventKind
    run_id: str
    provider: str
    model: Optional[str] = None
    is_stream: bool = False
    duration_ms: Optional[int] = None
    response: Optional[Response] = None
    error: Optional[BaseException] = Field(default=None, repr=False)


EventListener = Callable[[LifecycleEvent], Any]


class ExecutionEngine(Protocol):
    """The execution and embedding contract every engine layer implements."""

    def execute(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        *,
        executor: Optional[ToolExecutor] = None,
        context: Optional[RunContext] = None,
    ) -> Response:
        ...

    def execute_streaming(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        on_chunk: ChunkSink,
        *,
        executor: Optional[ToolExecutor] = None,
        context: Optional[RunContext] = None,
    ) -> Response:
        ...

    def embed(
        self,
        inputs: Union[str, List[str]],
        config: ProviderConfig,
        *,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        context: Optional[RunContext] = None,
    ) -> EmbeddingResponse:
        ...


class EventEmittingEngine(AsyncEngineMixin):
    """Engine wrapper that notifies listeners around each execution."""

    def __init__(self, inner: ExecutionEngine, listeners: Optional[List[EventListener]] = None) -> None:
        self.inner = inner
        self.listeners: List[EventListener] = list(listeners or [])
        self._stream_semaphore = None

    def add_listener(self, listener: EventListener) -> None:
        self.listeners.append(listener)

    def _emit(self, event: LifecycleEvent) -> None:
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Lifecycle listener failed on %s event (run %s)", event.kind, event.run_id)

    def _wrap(self, call: Callable[[RunContext], Response], conversation: Conversation, config: ProviderConfig,
              context: Optional[RunContext], is_stream: bool) -> Response:
        context = context or RunContext.create()
        model = conversation.options.model or config.model
        base = {"run_id": context.run_id, "provider": config.provider, "model": model, "is_stream": is_stream}
        self._emit(LifecycleEvent(kind="start", **base))
        t0 = time.monotonic()
        try:
            response = call(context)
        except Exception as exc:
            self._emit(
                LifecycleEvent(kind="error", duration_ms=int((time.monotonic() - t0) * 1000), error=exc, **base)
            )
            raise
        base["model"] = response.model
        self._emit(
            LifecycleEvent(kind="finish", duration_ms=int((time.monotonic() - t0) * 1000), response=response, **base)
        )
        return response

    def execute(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        *,
        executor: Optional[ToolExecutor] = None,
        context: Optional[RunContext] = None,
    ) -> Response:
        return self._wrap(
            lambda ctx: self.inner.execute(conversation, config, executor=executor, context=ctx),
            conversation,
            config,
            context,
            is_stream=False,
        )

    def execute_streaming(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        on_chunk: ChunkSink,
        *,
        executor: Optional[ToolExecutor] = None,
        context: Optional[RunContext] = None,
    ) -> Response:
        return self._wrap(
            lambda ctx: self.inner.execute_streaming(conversation, config, on_chunk, executor=executor, context=ctx),
            conversation,
            config,
            context,
            is_stream=True,
        )

    def embed(
        self,
        inputs: Union[str, List[str]],
        config: ProviderConfig,
        *,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        context: Optional[RunContext] = None,
    ) -> EmbeddingResponse:
        """Embeddings pass straight through; no lifecycle events are emitted."""
        return self.inner.embed(inputs, config, model=model, dimensions=dimensions, context=context)


__all__ = ["EventEmittingEngine", "EventListener", "ExecutionEngine", "LifecycleEvent"]
