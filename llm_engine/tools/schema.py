"""Tool definitions and argument checks against a tool's JSON schema."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from llm_engine.tools.interfaces import Tool
from llm_engine.types.conversation import ToolDefinition

_JSON_TYPES: Dict[str, Any] = {
    "string": str,
    "number": (int, float),
    "integer": int,
    "boolean": bool,
    "object": dict,
    "array": list,
    "null": type(None),
}


def tools_to_definitions(tools: Iterable[Tool]) -> List[ToolDefinition]:
    """Convert Tool objects to the canonical ToolDefinitions adapters encode."""
    return [
        ToolDefinition(
            name=tool.name,
            description=getattr(tool, "description", "") or "",
            parameters=getattr(tool, "parameters", None) or {"type": "object", "properties": {}},
        )
        for tool in tools
    ]


def _matches_type(value: Any, expected: Any) -> bool:
    names = expected if isinstance(expected, list) else [expected]
    for name in names:
        python_type = _JSON_TYPES.get(name)
        if python_type is None:
            return True  # unknown type keyword: do not reject
        if isinstance(value, bool) and name in ("number", "integer"):
            continue
        if isinstance(value, python_type):
            return True
        if name == "integer" and isinstance(value, float) and value.is_integer():
            return True
    return False


def validate_arguments(schema: Dict[str, Any], args: Dict[str, Any], path: str = "") -> List[str]:
    """
    Check ``args`` against the subset of JSON schema that tool definitions
    use (``required``, ``properties``, ``type``, ``enum``, ``items``).

    Returns a list of problems; empty when the arguments are acceptable.
    """
    problems: List[str] = []
    if not schema:
        return problems
    for name in schema.get("required") or []:
        if name not in args:
            problems.append(f"missing required argument '{path}{name}'")
    properties = schema.get("properties") or {}
    for name, value in args.items():
        prop_schema = properties.get(name)
        if prop_schema is None:
            if schema.get("additionalProperties") is False:
                problems.append(f"unexpected argument '{path}{name}'")
            continue
        problems.extend(_check_value(prop_schema, value, f"{path}{name}"))
    return problems


def _check_value(prop_schema: Dict[str, Any], value: Any, where: str) -> List[str]:
    expected = prop_schema.get("type")
    if expected is not None and not _matches_type(value, expected):
        return [f"argument '{where}' must be of type {expected}, got {type(value).__name__}"]
    if "enum" in prop_schema and value not in prop_schema["enum"]:
        return [f"argument '{where}' must be one of {prop_schema['enum']!r}"]
    if isinstance(value, dict) and (prop_schema.get("properties") or prop_schema.get("required")):
        return validate_arguments(prop_schema, value, path=f"{where}.")
    if isinstance(value, list) and isinstance(prop_schema.get("items"), dict):
        problems: List[str] = []
        for i, item in enumerate(value):
            problems.extend(_check_value(prop_schema["items"], item, f"{where}[{i}]"))
        return problems
    return []


__all__ = ["tools_to_definitions", "validate_arguments"]
