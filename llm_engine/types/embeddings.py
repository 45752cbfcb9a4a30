from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .responses import Usage


class EmbeddingResponse(BaseModel):
    """One vector per input text, in input order. Immutable."""

    model_config = ConfigDict(frozen=True)

    vectors: List[List[float]]
    provider: str = ""
    model: str = ""
    usage: Optional[Usage] = None
    raw: Any = Field(default=None, repr=False)

    @property
    def vector(self) -> List[float]:
        """The first vector (single-input calls)."""
        return self.vectors[0] if self.vectors else []

    @property
    def dimensions(self) -> int:
        return len(self.vector)


__all__ = ["EmbeddingResponse"]
