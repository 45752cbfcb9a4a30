"""Registry for tools by name; doubles as the tool loop's executor."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from llm_engine.service.errors import ToolExecutionError
from llm_engine.tools.interfaces import Tool
from llm_engine.tools.schema import tools_to_definitions, validate_arguments
from llm_engine.types.context import ToolContext
from llm_engine.types.conversation import ToolDefinition
from llm_engine.types.messages import ToolCall


@dataclass
class ToolRegistry:
    """Holds tools by name and runs ToolCalls against them."""

    _tools: Dict[str, Tool] = field(default_factory=dict)
    validate: bool = True

    def register_tool(self, tool: Tool) -> None:
        """Register a tool by its name."""
        if not tool.name:
            raise ValueError("Tool name must be non-empty")
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[Tool]:
        """Return the tool with the given name, or None if not registered."""
        return self._tools.get(name)

    def list_tools(self) -> Dict[str, Tool]:
        """Return a copy of the name -> tool mapping."""
        return dict(self._tools)

    def definitions(self, names: Optional[List[str]] = None) -> List[ToolDefinition]:
        """ToolDefinitions for ``names`` (all registered tools when omitted)."""
        if names is None:
            return tools_to_definitions(self._tools.values())
        missing = [n for n in names if n not in self._tools]
        if missing:
            raise ValueError(f"Unknown tool name(s): {missing!r}")
        return tools_to_definitions(self._tools[n] for n in names)

    def clear(self) -> None:
        """Remove all registered tools."""
        self._tools.clear()

    def __call__(self, tool_call: ToolCall, context: ToolContext) -> Any:
        tool = self._tools.get(tool_call.name)
        if tool is None:
            raise ToolExecutionError(tool_call.name, tool_call.id, f"Unknown tool: {tool_call.name}")
        if self.validate:
            problems = validate_arguments(getattr(tool, "parameters", None) or {}, tool_call.arguments)
            if problems:
                raise ToolExecutionError(
                    tool_call.name,
                    tool_call.id,
                    f"Invalid arguments for {tool_call.name}: " + "; ".join(problems),
                )
        return tool.run(tool_call.arguments, context)


_global_registry: Optional[ToolRegistry] = None
_global_registry_lock = threading.Lock()


def get_tool_registry() -> ToolRegistry:
    """Return the process-wide ToolRegistry singleton (thread-safe)."""
    global _global_registry
    if _global_registry is None:
        with _global_registry_lock:
            if _global_registry is None:
                _global_registry = ToolRegistry()
    return _global_registry


__all__ = ["ToolRegistry", "get_tool_registry"]
