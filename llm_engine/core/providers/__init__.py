"""
Backend adapters.

Modules are imported lazily by the ProviderRegistry; only the shared base
class is exposed here.
"""

from .base import BaseAdapter  # noqa: F401

__all__ = ["BaseAdapter"]
