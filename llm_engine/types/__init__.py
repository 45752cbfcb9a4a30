from .messages import ContentPart, FilePart, ImagePart, Message, Role, TextPart, ToolCall
from .context import CancellationToken, RunContext, ToolContext
from .conversation import (
    Conversation,
    GenerationOptions,
    OutputSchema,
    ToolChoice,
    ToolChoiceMode,
    ToolDefinition,
)
from .config import ProviderConfig
from .responses import Completion, Response, StopReason, Usage
from .embeddings import EmbeddingResponse
from .streaming import StreamChunk, StreamState, ToolCallDelta

__all__ = [
    "Role",
    "TextPart",
    "ImagePart",
    "FilePart",
    "ContentPart",
    "Message",
    "ToolCall",
    "CancellationToken",
    "RunContext",
    "ToolContext",
    "Conversation",
    "GenerationOptions",
    "OutputSchema",
    "ToolChoice",
    "ToolChoiceMode",
    "ToolDefinition",
    "ProviderConfig",
    "Completion",
    "Response",
    "StopReason",
    "Usage",
    "EmbeddingResponse",
    "StreamChunk",
    "StreamState",
    "ToolCallDelta",
]
