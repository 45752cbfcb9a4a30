"""Fold ordered StreamChunks into one in-progress assistant Message."""

from __future__ import annotations

from typing import List, Optional

from llm_engine.types.messages import ToolCall
from llm_engine.types.responses import Usage
from llm_engine.types.streaming import PartialToolCall, StreamChunk, StreamState, ToolCallDelta


def _merge_usage(current: Optional[Usage], update: Optional[Usage]) -> Optional[Usage]:
    """Fields present in ``update`` replace those in ``current``."""
    if update is None:
        return current
    if current is None:
        return update
    prompt = update.prompt_tokens if update.prompt_tokens is not None else current.prompt_tokens
    completion = (
        update.completion_tokens if update.completion_tokens is not None else current.completion_tokens
    )
    total = update.total_tokens
    if total is None and prompt is not None and completion is not None:
        total = prompt + completion
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        estimated=current.estimated or update.estimated,
    )


class StreamMerger:
    """
    Applies StreamChunks to a StreamState.

    Tool-call fragments are located by stream index when the backend sends
    one, otherwise by id; arrival order never decides which call a fragment
    belongs to. Only a terminal chunk (or ``finalize``) completes the message.
    """

    @staticmethod
    def _key(delta: ToolCallDelta) -> Optional[str]:
        if delta.index is not None:
            return f"index:{delta.index}"
        if delta.id:
            return f"id:{delta.id}"
        return None

    def _locate(self, state: StreamState, delta: ToolCallDelta) -> PartialToolCall:
        key = self._key(delta)
        if key is None:
            # No index and no id: continue the most recently opened call.
            if not state.partial_tool_calls:
                key = "index:0"
            else:
                return max(state.partial_tool_calls.values(), key=lambda p: p.order)
        partial = state.partial_tool_calls.get(key)
        if partial is None:
            partial = PartialToolCall(index=delta.index, order=len(state.partial_tool_calls))
            state.partial_tool_calls[key] = partial
        return partial

    def apply(self, state: StreamState, chunk: StreamChunk) -> StreamState:
        if state.finished:
            return state
        if chunk.message_id and not state.message.id:
            state.message.id = chunk.message_id
        if chunk.content_delta:
            state.message.content = state.message.text + chunk.content_delta
        for delta in chunk.tool_calls:
            partial = self._locate(state, delta)
            if delta.id and not partial.id:
                partial.id = delta.id
            if delta.name and not partial.name:
                partial.name = delta.name
            partial.arguments += delta.arguments_delta
        state.usage = _merge_usage(state.usage, chunk.usage)
        if chunk.stop_reason:
            state.stop_reason = chunk.stop_reason
        if chunk.final:
            self.finalize(state)
        return state

    def finalize(self, state: StreamState) -> StreamState:
        """Parse accumulated argument strings and mark the message complete."""
        if state.finished:
            return state
        partials = sorted(
            state.partial_tool_calls.values(),
            key=lambda p: (0, p.index, p.order) if p.index is not None else (1, 0, p.order),
        )
        tool_calls: List[ToolCall] = [
            ToolCall.from_raw(p.id or f"call_{position}", p.name, p.arguments)
            for position, p in enumerate(partials)
        ]
        state.message.tool_calls = tool_calls or None
        if state.stop_reason is None:
            state.stop_reason = "tool_use" if tool_calls else "end_turn"
        state.finished = True
        return state


__all__ = ["StreamMerger"]
