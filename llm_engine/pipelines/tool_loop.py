"""Tool-call loop: request -> response -> tools -> re-request -> done."""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import BaseModel

from llm_engine.core.interfaces import Adapter, RequestOptions, Transport, WireRequest
from llm_engine.service.errors import (
    CancelledError,
    ToolExecutionError,
    ToolLoopExceededError,
    UnsupportedCapabilityError,
)
from llm_engine.service.usage import estimate_usage
from llm_engine.tools.interfaces import ToolExecutor
from llm_engine.types.config import ProviderConfig
from llm_engine.types.context import RunContext, ToolContext
from llm_engine.types.conversation import Conversation, ToolChoice, ToolChoiceMode
from llm_engine.types.messages import Message, ToolCall
from llm_engine.types.responses import Completion, Response, Usage

logger = logging.getLogger(__name__)

ChunkSink = Callable[[Message, Optional[str], bool], None]


class LoopState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    PARSED = "parsed"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"


class LoopTransition(BaseModel):
    state: LoopState
    iteration: int
    detail: str = ""


def encode_tool_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class ToolLoopController:
    """
    Drives one conversation to completion against one adapter.

    Every model round trip counts toward ``max_tool_iterations``. Tool
    failures become error tool-results and the loop continues; everything
    else (provider errors, malformed tool calls, cancellation, the
    iteration limit) ends the run in FAILED.
    """

    def __init__(
        self,
        adapter: Adapter,
        transport: Transport,
        *,
        executor: Optional[ToolExecutor] = None,
        context: Optional[RunContext] = None,
        max_tool_iterations: Optional[int] = None,
    ) -> None:
        self.adapter = adapter
        self.transport = transport
        self.executor = executor
        self.context = context or RunContext.create()
        self.max_tool_iterations = max_tool_iterations
        self.state = LoopState.IDLE
        self.history: List[LoopTransition] = []

    # -- public -------------------------------------------------------------

    def run(
        self,
        conversation: Conversation,
        config: ProviderConfig,
        on_chunk: Optional[ChunkSink] = None,
    ) -> Response:
        """Run until the model answers without tool calls; returns the Response.

        Streams when a sink is given or the conversation asks for it; without
        a sink the streamed chunks are only merged into the final message.
        """
        stream = on_chunk is not None or conversation.options.stream
        max_iterations = self.max_tool_iterations or config.max_tool_iterations
        tool_choice = conversation.options.tool_choice
        usage: Optional[Usage] = None
        iteration = 0
        try:
            conversation.validate_for_request()
            while True:
                self._check_cancelled()
                iteration += 1
                options = RequestOptions.resolve(
                    conversation,
                    config,
                    default_model=self.adapter.default_model_for(config),
                    stream=stream,
                    tool_choice=tool_choice,
                )
                if iteration == 1:
                    self._check_capabilities(conversation, options)
                self._transition(LoopState.REQUESTING, iteration)
                request = self.adapter.build_request(conversation, options)
                if stream:
                    completion = self._stream(request, on_chunk, iteration)
                else:
                    completion = self._request(request)
                if completion.usage is None and config.estimate_usage:
                    completion.usage = estimate_usage(conversation.messages, completion.message, options.model)
                if completion.usage is not None:
                    usage = completion.usage if usage is None else usage + completion.usage

                self._transition(LoopState.PARSED, iteration)
                self._assign_call_ids(completion.message, conversation, iteration)
                message = conversation.append(completion.message)
                calls = message.tool_calls or []
                if not calls:
                    self._transition(LoopState.DONE, iteration)
                    return Response(
                        message=message,
                        provider=self.adapter.name,
                        model=options.model,
                        stop_reason=completion.stop_reason,
                        usage=usage,
                        iterations=iteration,
                        raw=completion.raw,
                    )

                self._transition(LoopState.EXECUTING_TOOLS, iteration, f"{len(calls)} call(s)")
                for call in calls:
                    self._check_cancelled()
                    conversation.append(self._execute(call, iteration))
                if iteration >= max_iterations:
                    raise ToolLoopExceededError(max_iterations)
                if tool_choice.is_forced and tool_choice.satisfied_by([c.name for c in calls]):
                    tool_choice = ToolChoice.auto()
        except BaseException as exc:
            self._transition(LoopState.FAILED, iteration, type(exc).__name__)
            raise

    # -- steps --------------------------------------------------------------

    def _transition(self, state: LoopState, iteration: int, detail: str = "") -> None:
        self.state = state
        self.history.append(LoopTransition(state=state, iteration=iteration, detail=detail))
        logger.debug(
            "Tool loop run_id=%s provider=%s iteration=%s -> %s %s",
            self.context.run_id,
            self.adapter.name,
            iteration,
            state.value,
            detail,
        )

    def _check_cancelled(self) -> None:
        if self.context.cancelled:
            raise CancelledError(f"Run {self.context.run_id} cancelled")

    def _check_capabilities(self, conversation: Conversation, options: RequestOptions) -> None:
        caps = self.adapter.capabilities(options.model)
        needed = []
        if options.stream and not caps.streaming:
            needed.append("streaming")
        if conversation.tools and options.tool_choice.mode is not ToolChoiceMode.NONE and not caps.tools:
            needed.append("tools")
        if conversation.options.output_schema is not None and not caps.structured_output:
            needed.append("structured output")
        if conversation.has_media and not caps.multimodal:
            needed.append("multimodal input")
        if needed:
            raise UnsupportedCapabilityError(self.adapter.name, options.model, ", ".join(needed))

    def _assign_call_ids(self, message: Message, conversation: Conversation, iteration: int) -> None:
        """Replace missing or already-used tool call ids with turn-scoped ones."""
        if not message.tool_calls:
            return
        seen = set(conversation.requested_tool_call_ids())
        for position, call in enumerate(message.tool_calls):
            if call.id and call.id not in seen:
                seen.add(call.id)
                continue
            candidate = f"call_{iteration}_{position}"
            suffix = 1
            while candidate in seen:
                candidate = f"call_{iteration}_{position}_{suffix}"
                suffix += 1
            logger.debug(
                "Reassigned tool call id %r -> %r in run %s", call.id, candidate, self.context.run_id
            )
            call.id = candidate
            seen.add(candidate)

    def _request(self, request: WireRequest) -> Completion:
        wire_response = self.transport.send(request, self.context.cancellation)
        self._check_cancelled()
        return self.adapter.parse_response(wire_response)

    def _stream(self, request: WireRequest, on_chunk: Optional[ChunkSink], iteration: int) -> Completion:
        self._transition(LoopState.STREAMING, iteration)
        state = self.adapter.start_stream(request)
        reported_final = False
        with self.transport.open_stream(request, self.context.cancellation) as stream:
            if not 200 <= stream.status_code < 300:
                self.adapter.raise_for_status(stream.read())
            for raw_chunk in stream.iter_chunks():
                self._check_cancelled()
                state, delta, is_final = self.adapter.process_stream_chunk(raw_chunk, state)
                if on_chunk is not None and (delta is not None or is_final):
                    on_chunk(state.message, delta, is_final)
                if is_final:
                    reported_final = True
                    break
        self._check_cancelled()
        completion = self.adapter.finish_stream(state)
        if on_chunk is not None and not reported_final:
            on_chunk(completion.message, None, True)
        return completion

    def _execute(self, call: ToolCall, iteration: int) -> Message:
        tool_context = ToolContext(run=self.context, tool_call=call, iteration=iteration)
        try:
            if self.executor is None:
                raise ToolExecutionError(call.name, call.id, "No tool executor configured")
            result = self.executor(call, tool_context)
        except (CancelledError, ToolLoopExceededError):
            raise
        except Exception as exc:
            error = exc if isinstance(exc, ToolExecutionError) else ToolExecutionError(call.name, call.id, str(exc) or type(exc).__name__)
            logger.warning(
                "Tool %s (id=%s) failed in run %s: %s",
                call.name,
                call.id,
                self.context.run_id,
                error,
                exc_info=exc,
            )
            return Message(
                role="tool",
                tool_call_id=call.id,
                name=call.name,
                content=json.dumps({"error": str(error), "type": type(exc).__name__}),
                metadata={"is_error": True},
            )
        return Message(role="tool", tool_call_id=call.id, name=call.name, content=encode_tool_result(result))


__all__ = ["ChunkSink", "LoopState", "LoopTransition", "ToolLoopController", "encode_tool_result"]
