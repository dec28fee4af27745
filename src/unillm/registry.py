"""Lookup of providers by name.

There is no process-wide table: build a :class:`ProviderRegistry` (or take
a fresh one from :func:`default_registry`) and pass it where it is needed.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from unillm.provider import (
    AnthropicProvider,
    DeepSeekProvider,
    GroqProvider,
    ModelProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    OpenRouter,
    VLLMProvider,
    XAIProvider,
)

logger = logging.getLogger(__name__)

ProviderFactory = Callable[..., ModelProvider]


class ProviderRegistry:
    """Name to factory table.

    A factory is called as ``factory(model, **settings)``.
    """

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory, *, replace: bool = False) -> None:
        if name in self._factories and not replace:
            raise ValueError(f"Provider {name!r} is already registered")
        self._factories[name] = factory

    def unregister(self, name: str) -> None:
        self._factories.pop(name, None)

    def reset(self) -> None:
        self._factories.clear()

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    def create(self, name: str, model: str, **settings: Any) -> ModelProvider:
        """Build provider *name* for *model*.

        ``name`` may also be given as ``"provider:model"`` with ``model``
        left empty.
        """
        if not model and ":" in name:
            name, model = name.split(":", 1)
        factory = self._factories.get(name)
        if factory is None:
            raise ValueError(
                f"Unknown provider {name!r}. Registered: {', '.join(self.names()) or 'none'}"
            )
        logger.debug("Creating %s provider for %s", name, model)
        return factory(model, **settings)


def default_registry() -> ProviderRegistry:
    """A new registry populated with every built-in provider."""
    registry = ProviderRegistry()
    registry.register("openai", OpenAIProvider)
    registry.register("openai_compatible", OpenAICompatibleProvider)
    registry.register("openrouter", OpenRouter)
    registry.register("vllm", VLLMProvider)
    registry.register("deepseek", DeepSeekProvider)
    registry.register("groq", GroqProvider)
    registry.register("xai", XAIProvider)
    registry.register("anthropic", AnthropicProvider)
    registry.register("ollama", OllamaProvider)
    return registry
