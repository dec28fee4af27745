"""Provider configuration.

A :class:`ProviderConfig` is immutable for the lifetime of a provider and
of every stream it opens.  Provider-specific knobs live in
``provider_options`` under the provider's own namespace.
"""

from __future__ import annotations

import os
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from unillm.streaming import FragmentMode


class ProviderConfig(BaseModel):
    """Settings for one provider instance.

    Args:
        provider_id: Namespace for metadata and errors (``"openai"``, ...).
        model: Model name sent with every request.
        base_url: API root, including any version prefix.
        api_key: Explicit API key.  Falls back to ``api_key_env``.
        api_key_env: Environment variable holding the API key.
        timeout: Transport timeout in seconds.
        max_retries: Transport-level retries (only the openai SDK retries).
        fragment_mode: Tool-call argument semantics for this provider.
        think_tags: Split ``<think>...</think>`` out of content into reasoning.
        parse_tool_calls_from_text: Recover tool calls written as plain
            JSON text when tools were offered but none came back structured.
        include_usage: Ask OpenAI-style servers for a trailing usage chunk.
        reasoning: Ask the model to think (Ollama ``think``, Anthropic
            ``thinking``).
        provider_options: Read-only ``{namespace: {key: value}}`` extras
            merged into the request body of the matching provider.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    provider_id: str
    model: str
    base_url: str
    api_key: str | None = None
    api_key_env: str | None = None
    timeout: float = 600.0
    max_retries: int = 2
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop: list[str] | None = None
    fragment_mode: FragmentMode = FragmentMode.APPEND
    think_tags: bool = False
    parse_tool_calls_from_text: bool = False
    include_usage: bool = True
    reasoning: bool = False
    reasoning_budget_tokens: int | None = None
    headers: Mapping[str, str] = Field(default_factory=dict)
    provider_options: Mapping[str, Mapping[str, Any]] = Field(default_factory=dict)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("provider_options", "headers")
    @classmethod
    def _freeze(cls, value: Mapping) -> Mapping:
        return MappingProxyType({
            k: MappingProxyType(dict(v)) if isinstance(v, Mapping) else v
            for k, v in value.items()
        })

    def resolve_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.getenv(self.api_key_env)
        return None

    def options_for(self, namespace: str | None = None) -> dict[str, Any]:
        """Return a copy of the options namespaced under *namespace*."""
        return dict(self.provider_options.get(namespace or self.provider_id, {}))


# Defaults for known OpenAI-compatible services.  Values may be overridden
# by keyword arguments when a provider is constructed.
PROFILES: Mapping[str, Mapping[str, Any]] = MappingProxyType({
    "openai": MappingProxyType({
        "base_url": "https://api.openai.com/v1",
        "api_key_env": "OPENAI_API_KEY",
    }),
    "openrouter": MappingProxyType({
        "base_url": "https://openrouter.ai/api/v1",
        "api_key_env": "OPENROUTER_API_KEY",
        "timeout": 180.0,
    }),
    "deepseek": MappingProxyType({
        "base_url": "https://api.deepseek.com/v1",
        "api_key_env": "DEEPSEEK_API_KEY",
    }),
    "groq": MappingProxyType({
        "base_url": "https://api.groq.com/openai/v1",
        "api_key_env": "GROQ_API_KEY",
        "think_tags": True,
    }),
    "xai": MappingProxyType({
        "base_url": "https://api.x.ai/v1",
        "api_key_env": "XAI_API_KEY",
    }),
    "anthropic": MappingProxyType({
        "base_url": "https://api.anthropic.com/v1",
        "api_key_env": "ANTHROPIC_API_KEY",
    }),
    "ollama": MappingProxyType({
        "base_url": "http://localhost:11434",
        "fragment_mode": FragmentMode.REPLACE,
        "include_usage": False,
    }),
})


def profile_config(provider_id: str, model: str, **overrides: Any) -> ProviderConfig:
    """Build a config from a named profile plus explicit overrides.

    ``None`` overrides are ignored so callers can pass optional arguments
    straight through.
    """
    values = dict(PROFILES.get(provider_id, {}))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return ProviderConfig(provider_id=provider_id, model=model, **values)
