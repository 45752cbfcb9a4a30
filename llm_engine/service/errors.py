from __future__ import annotations

import html
import re
from typing import Optional


class LLMError(Exception):
    """Base error type for all LLM engine failures."""


class LLMConfigurationError(LLMError):
    """Misconfiguration of providers, models, or capabilities."""


class UnknownProviderError(LLMConfigurationError):
    """No adapter is registered for the requested provider id."""

    def __init__(self, provider: str, available: Optional[list[str]] = None) -> None:
        self.provider = provider
        self.available = list(available or [])
        super().__init__(
            f"Unknown provider '{provider}'. "
            f"Registered providers: {self.available or '[]'}"
        )


class UnsupportedCapabilityError(LLMConfigurationError):
    """The conversation needs a capability the provider/model does not offer."""

    def __init__(self, provider: str, model: str, capability: str) -> None:
        self.provider = provider
        self.model = model
        self.capability = capability
        super().__init__(
            f"Provider '{provider}' (model={model}) does not support {capability}"
        )


class UnsupportedContentError(LLMConfigurationError):
    """A message part cannot be expressed in the provider's wire format."""


class InvalidConversationError(LLMError):
    """Conversation is empty or breaks the tool-call correlation invariant."""


class ProviderApiError(LLMError):
    """The backend returned an error, a malformed body, or could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: Optional[int] = None,
        category: str = "unknown",
        body: Optional[str] = None,
    ) -> None:
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.category = category
        self.body = body
        super().__init__(message)

    def __str__(self) -> str:
        status = f" status={self.status_code}" if self.status_code is not None else ""
        return f"[{self.provider or 'provider'}{status} {self.category}] {self.message}"


class LLMTimeoutError(ProviderApiError):
    """Timeout while waiting for the backend."""


class MalformedToolCallError(LLMError):
    """The backend emitted tool-call arguments that are not a JSON object."""

    def __init__(self, tool_name: str, raw_arguments: object, reason: str = "") -> None:
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Malformed arguments for tool '{tool_name}'{detail} (raw={raw_arguments!r})"
        )


class ToolExecutionError(LLMError):
    """A tool raised, was unknown, or rejected its arguments."""

    def __init__(self, tool_name: str, tool_call_id: str, message: str) -> None:
        self.tool_name = tool_name
        self.tool_call_id = tool_call_id
        super().__init__(message)


class ToolLoopExceededError(LLMError):
    """The model kept requesting tools past the configured iteration limit."""

    def __init__(self, max_iterations: int) -> None:
        self.max_iterations = max_iterations
        super().__init__(
            f"Tool loop exceeded max_tool_iterations={max_iterations}"
        )


class CancelledError(LLMError):
    """The caller cancelled the run."""


_STATUS_CATEGORIES = {
    400: "invalid_request",
    401: "authentication",
    403: "permission",
    404: "not_found",
    408: "timeout",
    409: "conflict",
    413: "request_too_large",
    422: "unprocessable",
    429: "rate_limit",
    529: "overloaded",
}


def category_for_status(status_code: Optional[int]) -> str:
    """Map an HTTP status code to a normalized error category."""
    if status_code is None:
        return "unknown"
    if status_code in _STATUS_CATEGORIES:
        return _STATUS_CATEGORIES[status_code]
    if status_code >= 500:
        return "server_error"
    if status_code >= 400:
        return "invalid_request"
    return "unknown"


_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_H1_RE = re.compile(r"<h1[^>]*>(.*?)</h1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)


def extract_html_message(body: str, limit: int = 200) -> str:
    """Best-effort human message from an HTML (or other non-JSON) error body."""
    for pattern in (_TITLE_RE, _H1_RE):
        match = pattern.search(body)
        if match:
            text = " ".join(html.unescape(_TAG_RE.sub(" ", match.group(1))).split())
            if text:
                return text[:limit]
    stripped = _TAG_RE.sub(" ", _SCRIPT_RE.sub(" ", body))
    text = " ".join(html.unescape(stripped).split())
    return text[:limit] or "empty response body"


__all__ = [
    "LLMError",
    "LLMConfigurationError",
    "UnknownProviderError",
    "UnsupportedCapabilityError",
    "UnsupportedContentError",
    "InvalidConversationError",
    "ProviderApiError",
    "LLMTimeoutError",
    "MalformedToolCallError",
    "ToolExecutionError",
    "ToolLoopExceededError",
    "CancelledError",
    "category_for_status",
    "extract_html_message",
]
