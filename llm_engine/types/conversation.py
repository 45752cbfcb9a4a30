from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from llm_engine.service.errors import InvalidConversationError

from .messages import Message


class ToolDefinition(BaseModel):
    """A tool the model may call: name, description, JSON-schema parameters."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolChoiceMode(str, Enum):
    AUTO = "auto"  # tool use optional
    REQUIRED = "required"  # must call some tool
    TOOL = "tool"  # must call the named tool
    NONE = "none"  # tools disabled for this request


class ToolChoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: ToolChoiceMode = ToolChoiceMode.AUTO
    name: Optional[str] = None

    @model_validator(mode="after")
    def _check_name(self) -> "ToolChoice":
        if self.mode is ToolChoiceMode.TOOL and not self.name:
            raise ValueError("ToolChoice(mode=TOOL) requires a tool name")
        return self

    @classmethod
    def auto(cls) -> "ToolChoice":
        return cls(mode=ToolChoiceMode.AUTO)

    @classmethod
    def required(cls) -> "ToolChoice":
        return cls(mode=ToolChoiceMode.REQUIRED)

    @classmethod
    def tool(cls, name: str) -> "ToolChoice":
        return cls(mode=ToolChoiceMode.TOOL, name=name)

    @classmethod
    def none(cls) -> "ToolChoice":
        return cls(mode=ToolChoiceMode.NONE)

    @property
    def is_forced(self) -> bool:
        return self.mode in (ToolChoiceMode.REQUIRED, ToolChoiceMode.TOOL)

    def satisfied_by(self, called_names: List[str]) -> bool:
        """True when a forced choice has been honoured by the called tools."""
        if self.mode is ToolChoiceMode.REQUIRED:
            return bool(called_names)
        if self.mode is ToolChoiceMode.TOOL:
            return self.name in called_names
        return False


class OutputSchema(BaseModel):
    """Structured-output request: a named JSON schema."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = "response"
    description: Optional[str] = None
    schema_: Dict[str, Any] = Field(alias="schema")
    strict: bool = True


class GenerationOptions(BaseModel):
    """Per-conversation configuration bag; unset fields fall back to ProviderConfig."""

    model_config = ConfigDict(frozen=True)

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: bool = False
    output_schema: Optional[OutputSchema] = None
    tool_choice: ToolChoice = Field(default_factory=ToolChoice.auto)
    extras: Dict[str, Any] = Field(default_factory=dict)  # merged into the wire body


class Conversation(BaseModel):
    """Ordered messages plus tools and options. Append-only."""

    messages: List[Message] = Field(default_factory=list)
    tools: List[ToolDefinition] = Field(default_factory=list)
    options: GenerationOptions = Field(default_factory=GenerationOptions)

    def append(self, message: Message) -> Message:
        """Append a message, enforcing tool-result correlation and unique call ids."""
        if message.tool_calls:
            ids = [tc.id for tc in message.tool_calls]
            existing = set(self.requested_tool_call_ids())
            duplicates = sorted({i for i in ids if i in existing or ids.count(i) > 1})
            if duplicates:
                raise InvalidConversationError(f"duplicate tool_call_id(s) {duplicates}")
        if message.role == "tool":
            if not message.tool_call_id:
                raise InvalidConversationError("tool message requires tool_call_id")
            if message.tool_call_id not in self.requested_tool_call_ids():
                raise InvalidConversationError(
                    f"tool message references unknown tool_call_id={message.tool_call_id!r}"
                )
        self.messages.append(message)
        return message

    def extend(self, messages: List[Message]) -> None:
        for message in messages:
            self.append(message)

    def requested_tool_call_ids(self) -> List[str]:
        ids: List[str] = []
        for m in self.messages:
            if m.role == "assistant" and m.tool_calls:
                ids.extend(tc.id for tc in m.tool_calls)
        return ids

    def tool_call_name(self, tool_call_id: str) -> Optional[str]:
        for m in reversed(self.messages):
            for tc in m.tool_calls or []:
                if tc.id == tool_call_id:
                    return tc.name
        return None

    def validate_for_request(self) -> None:
        if not self.messages:
            raise InvalidConversationError(
                "Conversation must contain at least one message before a request is built"
            )

    @property
    def has_media(self) -> bool:
        return any(m.has_media for m in self.messages)

    @property
    def system_text(self) -> str:
        return "\n\n".join(m.text for m in self.messages if m.role == "system" and m.text)

    @property
    def non_system_messages(self) -> List[Message]:
        return [m for m in self.messages if m.role != "system"]


__all__ = [
    "ToolDefinition",
    "ToolChoiceMode",
    "ToolChoice",
    "OutputSchema",
    "GenerationOptions",
    "Conversation",
]
