from __future__ import annotations

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from llm_engine.service.errors import MalformedToolCallError


Role = Literal["system", "user", "assistant", "tool"]


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """Image given either by URL (http(s) or data: URL) or by base64 data."""

    type: Literal["image"] = "image"
    url: Optional[str] = None
    data: Optional[str] = None  # base64, no data: prefix
    media_type: Optional[str] = None
    detail: Optional[str] = None  # OpenAI "low" | "high" | "auto"

    def as_data_url(self) -> Optional[str]:
        if self.data:
            return f"data:{self.media_type or 'image/png'};base64,{self.data}"
        return self.url

    def inline(self) -> Optional[tuple[str, str]]:
        """Return (media_type, base64) when the image bytes are inline."""
        if self.data:
            return self.media_type or "image/png", self.data
        if self.url and self.url.startswith("data:") and ";base64," in self.url:
            header, payload = self.url.split(",", 1)
            return header[len("data:") : -len(";base64")], payload
        return None


class FilePart(BaseModel):
    """Document reference: an uploaded file id, a URL, or inline base64 data."""

    type: Literal["file"] = "file"
    file_id: Optional[str] = None
    url: Optional[str] = None
    data: Optional[str] = None
    filename: Optional[str] = None
    media_type: Optional[str] = None


ContentPart = Annotated[Union[TextPart, ImagePart, FilePart], Field(discriminator="type")]


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str  # correlates call with result
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, id: str, name: str, raw_arguments: Any) -> "ToolCall":
        """Build a ToolCall from a backend's raw argument string or object.

        Empty strings/None parse to ``{}``. Anything that is not a JSON object
        raises MalformedToolCallError.
        """
        if raw_arguments is None or raw_arguments == "":
            return cls(id=id, name=name, arguments={})
        if isinstance(raw_arguments, str):
            try:
                parsed = json.loads(raw_arguments)
            except ValueError as exc:
                raise MalformedToolCallError(name, raw_arguments, str(exc)) from exc
        else:
            parsed = raw_arguments
        if not isinstance(parsed, dict):
            raise MalformedToolCallError(name, raw_arguments, "arguments must be a JSON object")
        try:
            json.dumps(parsed)
        except (TypeError, ValueError) as exc:
            raise MalformedToolCallError(name, raw_arguments, str(exc)) from exc
        return cls(id=id, name=name, arguments=parsed)

    def arguments_json(self) -> str:
        return json.dumps(self.arguments)


class Message(BaseModel):
    """Canonical chat message shared by every adapter and the tool loop."""

    role: Role
    content: Union[str, List[ContentPart]] = ""
    tool_calls: Optional[List[ToolCall]] = None  # assistant messages requesting tools
    tool_call_id: Optional[str] = None  # tool result messages
    name: Optional[str] = None
    id: Optional[str] = None  # backend-assigned
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def parts(self) -> List[ContentPart]:
        if isinstance(self.content, str):
            return [TextPart(text=self.content)] if self.content else []
        return list(self.content)

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def has_media(self) -> bool:
        return any(not isinstance(p, TextPart) for p in self.parts)

    def single_text(self) -> Optional[str]:
        """Return the text if content is exactly one text part and nothing else."""
        if isinstance(self.content, str):
            return self.content
        if len(self.content) == 1 and isinstance(self.content[0], TextPart):
            return self.content[0].text
        return None


__all__ = [
    "Role",
    "TextPart",
    "ImagePart",
    "FilePart",
    "ContentPart",
    "ToolCall",
    "Message",
]
