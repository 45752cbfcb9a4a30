from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

DEFAULT_MAX_TOOL_ITERATIONS = 10
DEFAULT_TIMEOUT_SECONDS = 60.0


class ProviderConfig(BaseModel):
    """Resolved, immutable provider configuration passed into every execute call.

    Built by the surrounding application (settings, secrets manager, ...);
    nothing in the engine reads the environment or files.
    """

    model_config = ConfigDict(frozen=True)

    provider: str
    model: Optional[str] = None
    api_key: Optional[SecretStr] = None
    base_url: Optional[str] = None
    organization: Optional[str] = None
    project: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    max_tool_iterations: int = Field(default=DEFAULT_MAX_TOOL_ITERATIONS, ge=1)
    estimate_usage: bool = False
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    extra_query: Dict[str, str] = Field(default_factory=dict)
    # Provider-specific settings: azure_resource, deployment_id, api_version,
    # aws_region, app_name, site_url, anthropic_version, embedding_model,
    # embedding_deployment_id, ...
    options: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProviderConfig":
        """Build from a plain mapping; unknown keys go into ``options``."""
        known = set(cls.model_fields)
        values = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        if extra:
            values["options"] = {**extra, **dict(values.get("options") or {})}
        return cls(**values)

    def secret(self) -> Optional[str]:
        return self.api_key.get_secret_value() if self.api_key else None

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


__all__ = ["DEFAULT_MAX_TOOL_ITERATIONS", "DEFAULT_TIMEOUT_SECONDS", "ProviderConfig"]
