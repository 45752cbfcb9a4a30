"""
Provider abstraction and execution engine for LLM backends.

Public entrypoint:

    from llm_engine import get_engine
    engine = get_engine()
    response = engine.execute(conversation, config)
"""

from .service.engine import Engine, get_engine  # noqa: F401
from .service.middleware import EventEmittingEngine  # noqa: F401
from .core.registry import get_provider_registry  # noqa: F401

__all__ = ["Engine", "EventEmittingEngine", "get_engine", "get_provider_registry"]
