from .interfaces import Tool, ToolExecutor
from .registry import ToolRegistry, get_tool_registry
from .schema import tools_to_definitions, validate_arguments

__all__ = [
    "Tool",
    "ToolExecutor",
    "ToolRegistry",
    "get_tool_registry",
    "tools_to_definitions",
    "validate_arguments",
]
