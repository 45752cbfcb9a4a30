"""Tool interface for the LLM engine."""

from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable

from llm_engine.types.context import ToolContext
from llm_engine.types.messages import ToolCall


@runtime_checkable
class Tool(Protocol):
    """Protocol for a callable tool the model can invoke."""

    name: str
    description: str
    parameters: Dict[str, Any]  # JSON schema for the arguments object

    def run(self, args: Dict[str, Any], context: ToolContext) -> Any:
        """Execute the tool with the given arguments and tool context."""
        ...


@runtime_checkable
class ToolExecutor(Protocol):
    """Callable the tool loop uses to run one ToolCall."""

    def __call__(self, tool_call: ToolCall, context: ToolContext) -> Any:
        ...


__all__ = ["Tool", "ToolExecutor"]
