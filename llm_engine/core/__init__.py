from .interfaces import Adapter, Capabilities, RequestOptions, Transport, WireRequest, WireResponse
from .registry import ProviderRegistry, get_provider_registry

__all__ = [
    "Adapter",
    "Capabilities",
    "RequestOptions",
    "Transport",
    "WireRequest",
    "WireResponse",
    "ProviderRegistry",
    "get_provider_registry",
]
