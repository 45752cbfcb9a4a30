from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .messages import Message


StopReason = Literal["end_turn", "tool_use", "max_tokens", "content_filter", "other"]


class Usage(BaseModel):
    """Token accounting for one or more LLM round trips."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    estimated: bool = False

    def __add__(self, other: Optional["Usage"]) -> "Usage":
        if other is None:
            return self

        def _sum(a: Optional[int], b: Optional[int]) -> Optional[int]:
            if a is None and b is None:
                return None
            return (a or 0) + (b or 0)

        return Usage(
            prompt_tokens=_sum(self.prompt_tokens, other.prompt_tokens),
            completion_tokens=_sum(self.completion_tokens, other.completion_tokens),
            total_tokens=_sum(self.total_tokens, other.total_tokens),
            estimated=self.estimated or other.estimated,
        )

    @classmethod
    def of(cls, prompt: Optional[int], completion: Optional[int], total: Optional[int] = None) -> "Usage":
        if total is None and (prompt is not None or completion is not None):
            total = (prompt or 0) + (completion or 0)
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


class Completion(BaseModel):
    """Result of parsing a single backend round trip."""

    message: Message
    stop_reason: StopReason = "other"
    usage: Optional[Usage] = None
    raw: Any = Field(default=None, repr=False)


class Response(BaseModel):
    """Terminal result of an execute call. Immutable."""

    model_config = ConfigDict(frozen=True)

    message: Message
    provider: str
    model: str
    stop_reason: StopReason = "other"
    usage: Optional[Usage] = None
    iterations: int = 1
    raw: Any = Field(default=None, repr=False)


__all__ = ["StopReason", "Usage", "Completion", "Response"]
