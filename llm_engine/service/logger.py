"""
Engine call logging helpers.

Each completed or failed execution produces one structured log record on the
``llm_engine.calls`` logger; the fields travel in ``extra=`` so handlers and
formatters (JSON log shippers, etc.) can pick them up by name.

These functions never raise: a logging failure must never surface to the
caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from llm_engine.types.config import ProviderConfig
    from llm_engine.types.context import RunContext
    from llm_engine.types.embeddings import EmbeddingResponse
    from llm_engine.types.responses import Response

logger = logging.getLogger(__name__)
call_logger = logging.getLogger("llm_engine.calls")


def _base_fields(context: "RunContext", config: "ProviderConfig", duration_ms: int, is_stream: bool) -> Dict[str, Any]:
    return {
        "run_id": context.run_id,
        "trace_id": context.trace_id,
        "user_id": context.user_id,
        "conversation_id": context.conversation_id,
        "provider": config.provider,
        "duration_ms": duration_ms,
        "is_stream": is_stream,
    }


def _response_fields(response: "Response") -> Dict[str, Any]:
    usage = response.usage
    return {
        "model": response.model,
        "iterations": response.iterations,
        "stop_reason": response.stop_reason,
        "prompt_tokens": usage.prompt_tokens if usage else None,
        "completion_tokens": usage.completion_tokens if usage else None,
        "total_tokens": usage.total_tokens if usage else None,
        "usage_estimated": usage.estimated if usage else False,
        "status": "success",
    }


def log_call(context: "RunContext", config: "ProviderConfig", response: "Response", duration_ms: int) -> None:
    """Log a SUCCESS record for a non-streaming execution."""
    try:
        extra = _base_fields(context, config, duration_ms, is_stream=False)
        extra.update(_response_fields(response))
        call_logger.info(
            "LLM call %s/%s finished in %sms (%s iteration(s), stop=%s)",
            config.provider,
            response.model,
            duration_ms,
            response.iterations,
            response.stop_reason,
            extra=extra,
        )
    except Exception:
        logger.exception("Failed to write LLM call log (non-streaming)")


def log_stream(
    context: "RunContext",
    config: "ProviderConfig",
    response: "Response",
    chunk_count: int,
    duration_ms: int,
) -> None:
    """Log a SUCCESS record after a streaming execution completes."""
    try:
        extra = _base_fields(context, config, duration_ms, is_stream=True)
        extra.update(_response_fields(response))
        extra["chunk_count"] = chunk_count
        call_logger.info(
            "LLM stream %s/%s finished in %sms (%s chunk(s), %s iteration(s), stop=%s)",
            config.provider,
            response.model,
            duration_ms,
            chunk_count,
            response.iterations,
            response.stop_reason,
            extra=extra,
        )
    except Exception:
        logger.exception("Failed to write LLM call log (streaming)")


def log_embedding(
    context: "RunContext",
    config: "ProviderConfig",
    response: "EmbeddingResponse",
    input_count: int,
    duration_ms: int,
) -> None:
    """Log a SUCCESS record for an embedding request."""
    try:
        extra = _base_fields(context, config, duration_ms, is_stream=False)
        usage = response.usage
        extra.update(
            {
                "model": response.model,
                "input_count": input_count,
                "dimensions": response.dimensions,
                "prompt_tokens": usage.prompt_tokens if usage else None,
                "total_tokens": usage.total_tokens if usage else None,
                "status": "success",
            }
        )
        call_logger.info(
            "LLM embedding %s/%s finished in %sms (%s input(s), %s dimension(s))",
            config.provider,
            response.model,
            duration_ms,
            input_count,
            response.dimensions,
            extra=extra,
        )
    except Exception:
        logger.exception("Failed to write LLM embedding log")


def log_error(
    context: "RunContext",
    config: "ProviderConfig",
    exc: BaseException,
    duration_ms: int,
    *,
    is_stream: bool = False,
    model: Optional[str] = None,
) -> None:
    """Log an ERROR record for a failed execution."""
    try:
        extra = _base_fields(context, config, duration_ms, is_stream=is_stream)
        extra.update(
            {
                "model": model or config.model or "",
                "status": "error",
                "error_type": type(exc).__name__,
                "error_message": str(exc),
                "error_category": getattr(exc, "category", None),
                "status_code": getattr(exc, "status_code", None),
            }
        )
        call_logger.error(
            "LLM call %s/%s failed after %sms: %s: %s",
            config.provider,
            extra["model"],
            duration_ms,
            type(exc).__name__,
            exc,
            extra=extra,
        )
    except Exception:
        logger.exception("Failed to write LLM error log")


__all__ = ["call_logger", "log_call", "log_stream", "log_embedding", "log_error"]
