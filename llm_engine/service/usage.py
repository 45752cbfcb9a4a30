"""
Token usage estimation with tiktoken, for backends that omit usage.

Counts are approximate: non-OpenAI models are counted with a generic
encoding, and media parts are not counted.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional

from llm_engine.types.messages import Message
from llm_engine.types.responses import Usage

logger = logging.getLogger(__name__)

# Per-message framing overhead (role, separators) in chat-formatted prompts.
MESSAGE_OVERHEAD_TOKENS = 4


def encoding_name_for_model(model_name: Optional[str]) -> str:
    """Return the tiktoken encoding name for a model; cl100k_base when unknown."""
    if not model_name:
        return "cl100k_base"
    m = model_name.lower().split("/")[-1]
    if "gpt-4o" in m or "4o-mini" in m or m.startswith(("gpt-5", "o1", "o3", "o4")):
        return "o200k_base"
    return "cl100k_base"


def _get_encoding(model_name: Optional[str]):
    import tiktoken

    if model_name and model_name.lower().split("/")[-1].startswith("gpt-"):
        try:
            return tiktoken.encoding_for_model(model_name.split("/")[-1])
        except KeyError:
            pass
    return tiktoken.get_encoding(encoding_name_for_model(model_name))


def message_text_for_counting(message: Message) -> str:
    parts = [message.role, message.text]
    for call in message.tool_calls or []:
        parts.append(call.name)
        parts.append(json.dumps(call.arguments, ensure_ascii=False))
    return "\n".join(p for p in parts if p)


def count_tokens(text: str, model_name: Optional[str] = None) -> int:
    """Count tokens in ``text`` with the encoding for ``model_name``."""
    if not text:
        return 0
    return len(_get_encoding(model_name).encode(text))


def estimate_usage(prompt: List[Message], output: Message, model_name: Optional[str] = None) -> Optional[Usage]:
    """
    Estimate usage for one round trip: ``prompt`` is the conversation sent,
    ``output`` the assistant message received.

    Returns None (and logs) when the encoding cannot be loaded, so a missing
    estimate never fails a run.
    """
    try:
        prompt_tokens = sum(
            count_tokens(message_text_for_counting(m), model_name) + MESSAGE_OVERHEAD_TOKENS for m in prompt
        )
        completion_tokens = count_tokens(message_text_for_counting(output), model_name)
    except (KeyError, ValueError, OSError) as exc:
        logger.warning("Usage estimation failed for model %s: %s", model_name, exc)
        return None
    usage = Usage.of(prompt_tokens, completion_tokens)
    return usage.model_copy(update={"estimated": True})


__all__ = [
    "MESSAGE_OVERHEAD_TOKENS",
    "count_tokens",
    "encoding_name_for_model",
    "estimate_usage",
    "message_text_for_counting",
]
