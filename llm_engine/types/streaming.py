from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .messages import Message
from .responses import StopReason, Usage


class ToolCallDelta(BaseModel):
    """Fragment of a tool call; keyed by stream index when present, else by id."""

    index: Optional[int] = None
    id: Optional[str] = None
    name: Optional[str] = None
    arguments_delta: str = ""


class StreamChunk(BaseModel):
    """Normalized partial fragment of an in-progress assistant message."""

    content_delta: Optional[str] = None
    tool_calls: List[ToolCallDelta] = Field(default_factory=list)
    message_id: Optional[str] = None
    stop_reason: Optional[StopReason] = None
    usage: Optional[Usage] = None
    final: bool = False


class PartialToolCall(BaseModel):
    index: Optional[int] = None
    id: str = ""
    name: str = ""
    arguments: str = ""
    order: int = 0  # first-appearance order


class StreamState(BaseModel):
    """Mutable per-stream accumulator owned by one StreamMerger run."""

    message: Message = Field(default_factory=lambda: Message(role="assistant", content=""))
    partial_tool_calls: Dict[str, PartialToolCall] = Field(default_factory=dict)
    stop_reason: Optional[StopReason] = None
    usage: Optional[Usage] = None
    finished: bool = False
    shape: str = ""  # request shape the stream answers (e.g. "chat", "responses")
    raw_events: int = 0
    scratch: Dict[str, Any] = Field(default_factory=dict)  # adapter bookkeeping


__all__ = ["ToolCallDelta", "StreamChunk", "PartialToolCall", "StreamState"]
