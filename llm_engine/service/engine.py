"""
Engine: facade for executing conversations against any registered backend.

    from llm_engine import get_engine
    from llm_engine.types import Conversation, Message, ProviderConfig

    engine = get_engine()
    conversation = Conversation(messages=[Message(role="user", content="Hello")])
    config = ProviderConfig(provider="openai", model="gpt-4o-mini", api_key="sk-...")
    response = engine.execute(conversation, config)

For streaming, pass a sink that receives the in-progress message:

    def on_chunk(message, delta, is_final):
        if delta:
            print(delta, end="", flush=True)

    response = engine.execute_streaming(conversation, config, on_chunk)

Tools are run by an executor (``ToolRegistry`` is a ready-made one); the
conversation is extended in place with every assistant and tool message.

Embeddings use the same config:

    vectors = engine.embed(["first text", "second text"], config).vectors
"""

from __future__ import annotations

import asyncio
import inspect
import os
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from llm_engine.core.interfaces import Adapter, EmbeddingAdapter, Transport
from llm_engine.core.registry import ProviderRegistry, get_provider_registry
from llm_engine.core.transport import HttpTransport, LiteLLMTransport
from llm_engine.pipelines.tool_loop import ChunkSink, ToolLoopController
from llm_engine.service.errors import (
    LLMConfigurationError,
    LLMError,
    ProviderApiError,
    UnsupportedCapabilityError,
)
from llm_engine.service.logger import log_call, log_embedding, log_error, log_stream
from llm_engine.tools.interfaces import ToolExecutor
from llm_engine.types.config import ProviderConfig
from llm_engine.types.context import RunContext
from llm_engine.types.conversation import Conversation
from llm_engine.types.embeddings import EmbeddingResponse
from llm_engine.types.messages import Message
from llm_engine.types.responses import Response

LLM_ENGINE_MAX_CONCURRENT_STREAMS = int(os.environ.get("LLM_ENGINE_MAX_CONCURRENT_STREAMS", "20"))

AsyncChunkSink = Callable[[Message, Optional[str], bool], Union[None, Awaitable[None]]]


class AsyncEngineMixin:
    """Async bridge over a synchronous ``execute`` / ``execute_streaming``."""

    _stream_semaphore: Optional[asyncio.Semaphore] = None

    async def aexecute(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        *,
        executor: Optional[ToolExecutor] = None,
        context: Optional[RunContext] = None,
    ) -> Response:
        """Async wrapper around ``execute()``. Executes the blocking call in a thread."""
        context = context or RunContext.create()
        try:
            return await asyncio.to_thread(self.execute, conversation, config, executor=executor, context=context)
        except asyncio.CancelledError:
            context.cancellation.cancel()
            raise

    async def aembed(
        self,
        inputs: Union[str, List[str]],
        config: ProviderConfig,
        *,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        context: Optional[RunContext] = None,
    ) -> EmbeddingResponse:
        """Async wrapper around ``embed()``."""
        context = context or RunContext.create()
        try:
            return await asyncio.to_thread(
                self.embed, inputs, config, model=model, dimensions=dimensions, context=context
            )
        except asyncio.CancelledError:
            context.cancellation.cancel()
            raise

    _STREAM_SENTINEL = None  # sentinel to signal end of stream

    async def aexecute_streaming(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        on_chunk: AsyncChunkSink,
        *,
        executor: Optional[ToolExecutor] = None,
        context: Optional[RunContext] = None,
    ) -> Response:
        """Async wrapper around ``execute_streaming()`` with chunk-level delivery.

        A background thread runs the sync engine, pushing a snapshot of each
        chunk into an ``asyncio.Queue``; ``on_chunk`` runs on the caller's
        event loop (and is awaited when it returns an awaitable). Cancelling
        the awaiting task cancels the run.

        Concurrent streams are capped by ``LLM_ENGINE_MAX_CONCURRENT_STREAMS`` (default 20).
        """
        context = context or RunContext.create()
        sem = self._get_stream_semaphore()
        async with sem:
            loop = asyncio.get_running_loop()
            q: asyncio.Queue[Any] = asyncio.Queue()
            result: Dict[str, Response] = {}

            def _sink(message: Message, delta: Optional[str], is_final: bool) -> None:
                snapshot = message.model_copy(deep=True)
                loop.call_soon_threadsafe(q.put_nowait, (snapshot, delta, is_final))

            def _produce() -> None:
                try:
                    result["response"] = self.execute_streaming(
                        conversation, config, _sink, executor=executor, context=context
                    )
                except BaseException as exc:
                    loop.call_soon_threadsafe(q.put_nowait, exc)
                else:
                    loop.call_soon_threadsafe(q.put_nowait, self._STREAM_SENTINEL)

            thread = threading.Thread(target=_produce, daemon=True)
            thread.start()

            try:
                while True:
                    item = await q.get()
                    if item is self._STREAM_SENTINEL:
                        break
                    if isinstance(item, BaseException):
                        raise item
                    outcome = on_chunk(*item)
                    if inspect.isawaitable(outcome):
                        await outcome
            except asyncio.CancelledError:
                context.cancellation.cancel()
                raise
            return result["response"]

    def _get_stream_semaphore(self) -> asyncio.Semaphore:
        """Lazy-init the semaphore inside a running event loop."""
        if self._stream_semaphore is None:
            self._stream_semaphore = asyncio.Semaphore(LLM_ENGINE_MAX_CONCURRENT_STREAMS)
        return self._stream_semaphore


class Engine(AsyncEngineMixin):
    """Facade that resolves adapters, drives the tool loop, and normalizes errors.

    Accepts optional dependency overrides for testability. When omitted the
    process-wide provider registry and the default transports are used.
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        transports: Optional[Dict[str, Transport]] = None,
        executor: Optional[ToolExecutor] = None,
    ) -> None:
        self._registry = registry
        self._transports: Dict[str, Transport] = dict(transports or {})
        self._transports_lock = threading.Lock()
        self.executor = executor
        self._stream_semaphore = None

    # -- private accessors --------------------------------------------------

    def _get_registry(self) -> ProviderRegistry:
        return self._registry or get_provider_registry()

    def _get_transport(self, adapter: Adapter) -> Transport:
        kind = adapter.transport
        transport = self._transports.get(kind)
        if transport is None:
            with self._transports_lock:
                transport = self._transports.get(kind)
                if transport is None:
                    if kind == "http":
                        transport = HttpTransport()
                    elif kind == "litellm":
                        transport = LiteLLMTransport()
                    elif kind == "scripted":
                        from llm_engine.testing import ScriptedBackend

                        transport = ScriptedBackend()
                    else:
                        raise LLMConfigurationError(
                            f"No transport registered for {kind!r} (adapter {adapter.name})"
                        )
                    self._transports[kind] = transport
        return transport

    def _controller(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        executor: Optional[ToolExecutor],
        context: RunContext,
    ) -> ToolLoopController:
        model = conversation.options.model or config.model or ""
        adapter = self._get_registry().get_adapter(config.provider, model)
        return ToolLoopController(
            adapter,
            self._get_transport(adapter),
            executor=executor or self.executor,
            context=context,
            max_tool_iterations=config.max_tool_iterations,
        )

    # -- sync API -----------------------------------------------------------

    def execute(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        *,
        executor: Optional[ToolExecutor] = None,
        context: Optional[RunContext] = None,
    ) -> Response:
        """Run the full tool loop; returns the final Response.

        With ``GenerationOptions(stream=True)`` each round trip is streamed and
        merged without a sink.
        """
        context = context or RunContext.create()
        t0 = time.monotonic()
        try:
            response = self._controller(conversation, config, executor, context).run(conversation, config)
            log_call(context, config, response, int((time.monotonic() - t0) * 1000))
            return response
        except LLMError as exc:
            log_error(context, config, exc, int((time.monotonic() - t0) * 1000), model=conversation.options.model)
            raise
        except Exception as exc:
            log_error(context, config, exc, int((time.monotonic() - t0) * 1000), model=conversation.options.model)
            raise ProviderApiError(
                f"Execution against {config.provider} failed: {exc}",
                provider=config.provider,
                category="internal",
            ) from exc

    def execute_streaming(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        on_chunk: ChunkSink,
        *,
        executor: Optional[ToolExecutor] = None,
        context: Optional[RunContext] = None,
    ) -> Response:
        """Run the full tool loop, streaming each round trip to ``on_chunk``."""
        context = context or RunContext.create()
        t0 = time.monotonic()
        chunk_count = 0

        def _counting_sink(message: Message, delta: Optional[str], is_final: bool) -> None:
            nonlocal chunk_count
            chunk_count += 1
            on_chunk(message, delta, is_final)

        try:
            controller = self._controller(conversation, config, executor, context)
            response = controller.run(conversation, config, on_chunk=_counting_sink)
            log_stream(context, config, response, chunk_count, int((time.monotonic() - t0) * 1000))
            return response
        except LLMError as exc:
            log_error(
                context, config, exc, int((time.monotonic() - t0) * 1000),
                is_stream=True, model=conversation.options.model,
            )
            raise
        except Exception as exc:
            log_error(
                context, config, exc, int((time.monotonic() - t0) * 1000),
                is_stream=True, model=conversation.options.model,
            )
            raise ProviderApiError(
                f"Streaming execution against {config.provider} failed: {exc}",
                provider=config.provider,
                category="internal",
            ) from exc

    def _embedding_adapter(self, config: ProviderConfig, model: Optional[str]) -> Tuple[EmbeddingAdapter, str]:
        adapter = self._get_registry().get_adapter(config.provider, model or "")
        if not isinstance(adapter, EmbeddingAdapter):
            raise UnsupportedCapabilityError(config.provider, model or "", "embeddings")
        model = model or adapter.embedding_model_for(config)
        if not adapter.capabilities(model or "").embeddings:
            raise UnsupportedCapabilityError(config.provider, model or "", "embeddings")
        if not model:
            raise LLMConfigurationError(
                f"No embedding model configured for {config.provider}; "
                "pass model= or set options['embedding_model']"
            )
        return adapter, model

    def embed(
        self,
        inputs: Union[str, List[str]],
        config: ProviderConfig,
        *,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        context: Optional[RunContext] = None,
    ) -> EmbeddingResponse:
        """Embed one text or a batch; vectors come back in input order.

        The model is ``model``, else ``config.options["embedding_model"]``,
        else the backend's default embedding model.
        """
        context = context or RunContext.create()
        texts = [inputs] if isinstance(inputs, str) else list(inputs)
        t0 = time.monotonic()
        try:
            adapter, model = self._embedding_adapter(config, model)
            request = adapter.build_embedding_request(texts, config, model, dimensions)
            wire_response = self._get_transport(adapter).send(request, context.cancellation)
            response = adapter.parse_embedding_response(wire_response)
            if not response.model:
                response = response.model_copy(update={"model": model})
            if len(response.vectors) != len(texts):
                raise ProviderApiError(
                    f"Expected {len(texts)} embedding(s), got {len(response.vectors)}",
                    provider=config.provider,
                    category="malformed_response",
                )
            log_embedding(context, config, response, len(texts), int((time.monotonic() - t0) * 1000))
            return response
        except LLMError as exc:
            log_error(context, config, exc, int((time.monotonic() - t0) * 1000), model=model)
            raise
        except Exception as exc:
            log_error(context, config, exc, int((time.monotonic() - t0) * 1000), model=model)
            raise ProviderApiError(
                f"Embedding against {config.provider} failed: {exc}",
                provider=config.provider,
                category="internal",
            ) from exc

    def close(self) -> None:
        """Close transports that hold network resources."""
        for transport in self._transports.values():
            close = getattr(transport, "close", None)
            if close is not None:
                close()


_global_engine: Optional[Engine] = None
_global_engine_lock = threading.Lock()


def get_engine() -> Engine:
    """Return the process-wide Engine singleton (thread-safe)."""
    global _global_engine
    if _global_engine is None:
        with _global_engine_lock:
            if _global_engine is None:
                _global_engine = Engine()
    return _global_engine


__all__ = ["AsyncChunkSink", "AsyncEngineMixin", "Engine", "get_engine"]
