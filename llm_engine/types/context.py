from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .messages import ToolCall


class CancellationToken:
    """Caller-owned cancellation signal shared with the transport.

    ``cancel()`` may be called from any thread. Callbacks registered with
    ``on_cancel`` run once, on the cancelling thread (used to close an
    in-flight HTTP response).
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._discard(callback)
        callback()
        return lambda: None

    def _discard(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


class RunContext(BaseModel):
    """Per-run context for tracing, attribution, and cancellation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str = Field(default_factory=lambda: str(uuid4()))
    trace_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    cancellation: CancellationToken = Field(default_factory=CancellationToken, exclude=True)

    @classmethod
    def create(
        cls,
        user_id: Any | None = None,
        conversation_id: Any | None = None,
        cancellation: CancellationToken | None = None,
    ) -> "RunContext":
        return cls(
            user_id=str(user_id) if user_id is not None else None,
            conversation_id=str(conversation_id) if conversation_id is not None else None,
            cancellation=cancellation or CancellationToken(),
        )

    @property
    def cancelled(self) -> bool:
        return self.cancellation.cancelled


class ToolContext(BaseModel):
    """The tool call currently being executed, passed explicitly to executors."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run: RunContext
    tool_call: ToolCall
    iteration: int


__all__ = ["CancellationToken", "RunContext", "ToolContext"]
