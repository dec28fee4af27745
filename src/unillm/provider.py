"""Model providers.

A provider is a :class:`~unillm.config.ProviderConfig`, a transport and an
explicit set of capabilities.  The chat capability is a
:class:`ChatStreamer` composed into the provider, not inherited.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError

from unillm.adapters import (
    AnthropicAdapter,
    OllamaAdapter,
    OpenAICompatibleAdapter,
    StreamAdapter,
    XAIAdapter,
)
from unillm.cancellation import CancellationToken, run_cancellable
from unillm.config import ProviderConfig, profile_config
from unillm.emitter import stream_parts
from unillm.errors import InvalidRequestError, LLMError, ProviderError
from unillm.events import Error, Finish, StreamPart
from unillm.instrumentation import completion_span, record_error, record_usage
from unillm.message import Message
from unillm.response import ChatResponse
from unillm.tools import Tool, ToolRegistry, as_registry
from unillm.transport import HttpxTransport, OpenAISDKTransport, Transport

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class Capability(Enum):
    CHAT = "chat"
    STREAMING = "streaming"
    TOOLS = "tools"
    REASONING = "reasoning"
    CITATIONS = "citations"


@dataclass(frozen=True)
class Unsupported:
    """Returned by :meth:`ModelProvider.require` for a missing capability."""

    provider_id: str
    capability: Capability

    def __str__(self) -> str:
        return f"{self.provider_id} does not support {self.capability.value}"


class ChatStreamer:
    """Chat completions over one transport in one wire format.

    Args:
        config: Provider configuration.
        transport: Where request bodies go.
        adapter_class: Adapter type speaking the provider's wire format;
            a fresh adapter is built for every call.
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: Transport,
        adapter_class: type[StreamAdapter],
    ):
        self.config = config
        self.transport = transport
        self.adapter_class = adapter_class

    def adapter(self, tools: ToolRegistry | None = None) -> StreamAdapter:
        return self.adapter_class(self.config, tools)

    async def stream(
        self,
        messages: list[Message],
        tools: ToolRegistry | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[StreamPart]:
        adapter = self.adapter(tools)
        body = adapter.build_request(messages, stream=True)
        fragments = self.transport.stream(adapter.chat_path, body)
        async for part in stream_parts(fragments, adapter, cancel_token):
            yield part

    async def complete(
        self,
        messages: list[Message],
        tools: ToolRegistry | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChatResponse:
        adapter = self.adapter(tools)
        body = adapter.build_request(messages, stream=False)
        raw = await run_cancellable(self.transport.post(adapter.chat_path, body), cancel_token)
        try:
            return adapter.parse_response(raw)
        except ValidationError as e:
            raise ProviderError(
                f"Unexpected response body: {e.errors()[:3]}",
                provider=self.config.provider_id,
                data=raw,
            ) from e


class ModelProvider:
    """Base class for every provider.

    Subclasses choose the adapter, the default capabilities and how the
    transport is built.

    Args:
        config: Provider configuration.
        transport: Optional pre-built transport (tests inject fakes here).
        capabilities: Overrides the class default capability set.
    """

    adapter_class: type[StreamAdapter] = OpenAICompatibleAdapter
    capabilities: frozenset[Capability] = frozenset(
        {Capability.CHAT, Capability.STREAMING, Capability.TOOLS}
    )

    def __init__(
        self,
        config: ProviderConfig,
        transport: Transport | None = None,
        capabilities: Iterable[Capability] | None = None,
    ):
        self.config = config
        self.transport = transport or self.build_transport(config)
        if capabilities is not None:
            self.capabilities = frozenset(capabilities)
        self.chat = ChatStreamer(config, self.transport, self.adapter_class)

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    @property
    def model(self) -> str:
        return self.config.model

    def build_transport(self, config: ProviderConfig) -> Transport:
        return OpenAISDKTransport(
            config.base_url,
            api_key=config.resolve_api_key(),
            headers=config.headers,
            timeout=config.timeout,
            max_retries=config.max_retries,
            provider_id=config.provider_id,
        )

    def require(self, capability: Capability) -> Unsupported | None:
        if capability in self.capabilities:
            return None
        return Unsupported(self.provider_id, capability)

    def _check_tools(self, tools: ToolRegistry) -> None:
        if tools:
            unsupported = self.require(Capability.TOOLS)
            if unsupported is not None:
                raise InvalidRequestError(str(unsupported), provider=self.provider_id)

    async def complete(
        self,
        messages: list[Message],
        tools: ToolRegistry | Iterable[Tool] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChatResponse:
        """Run one non-streaming chat turn.

        Raises:
            LLMError: On any transport, provider or cancellation failure.
        """
        registry = as_registry(tools)
        self._check_tools(registry)
        async with completion_span(self.provider_id, self.model) as span:
            try:
                response = await self.chat.complete(messages, registry, cancel_token)
            except LLMError as e:
                record_error(span, e)
                raise
            record_usage(span, response.usage, self.model)
            return response

    async def stream(
        self,
        messages: list[Message],
        tools: ToolRegistry | Iterable[Tool] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[StreamPart]:
        """Run one streaming chat turn.

        Never raises for provider failures: the sequence always ends with
        exactly one :class:`~unillm.events.Finish` or
        :class:`~unillm.events.Error`.
        """
        registry = as_registry(tools)
        async with completion_span(self.provider_id, self.model, stream=True) as span:
            unsupported = self.require(Capability.STREAMING)
            if unsupported is None and registry:
                unsupported = self.require(Capability.TOOLS)
            if unsupported is not None:
                error = InvalidRequestError(str(unsupported), provider=self.provider_id)
                record_error(span, error)
                yield Error(error=error)
                return

            async for part in self.chat.stream(messages, registry, cancel_token):
                if isinstance(part, Finish):
                    record_usage(span, part.response.usage, self.model)
                elif isinstance(part, Error):
                    record_error(span, part.error)
                yield part

    async def aclose(self) -> None:
        await self.transport.aclose()


class OpenAICompatibleProvider(ModelProvider):
    """Any server speaking the OpenAI chat-completions API.

    Args:
        model: Model name.
        provider_id: Overrides the profile name used for defaults and
            metadata namespacing.
        transport: Optional pre-built transport.
        **settings: Any :class:`~unillm.config.ProviderConfig` field.
    """

    profile = "openai_compatible"

    def __init__(
        self,
        model: str,
        *,
        provider_id: str | None = None,
        transport: Transport | None = None,
        **settings: Any,
    ):
        config = profile_config(provider_id or self.profile, model, **settings)
        super().__init__(config, transport)


_WITH_REASONING = ModelProvider.capabilities | {Capability.REASONING}


class OpenAIProvider(OpenAICompatibleProvider):
    profile = "openai"
    capabilities = _WITH_REASONING


class OpenRouter(OpenAICompatibleProvider):
    profile = "openrouter"
    capabilities = _WITH_REASONING


class DeepSeekProvider(OpenAICompatibleProvider):
    profile = "deepseek"
    capabilities = _WITH_REASONING


class GroqProvider(OpenAICompatibleProvider):
    profile = "groq"
    capabilities = _WITH_REASONING


class VLLMProvider(OpenAICompatibleProvider):
    """A self-hosted vLLM server."""

    profile = "vllm"

    def __init__(self, model: str, url: str = "localhost", port: int = 8000, **settings: Any):
        settings.setdefault("base_url", f"http://{url}:{port}/v1")
        super().__init__(model, **settings)


class XAIProvider(OpenAICompatibleProvider):
    """xAI (Grok).  Live search is enabled through
    ``provider_options={"xai": {"search_parameters": {...}}}``."""

    profile = "xai"
    adapter_class = XAIAdapter
    capabilities = _WITH_REASONING | {Capability.CITATIONS}


class AnthropicProvider(ModelProvider):
    """Anthropic Messages API."""

    adapter_class = AnthropicAdapter
    capabilities = _WITH_REASONING | {Capability.CITATIONS}

    def __init__(self, model: str, *, transport: Transport | None = None, **settings: Any):
        super().__init__(profile_config("anthropic", model, **settings), transport)

    def build_transport(self, config: ProviderConfig) -> Transport:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        api_key = config.resolve_api_key()
        if api_key:
            headers["x-api-key"] = api_key
        headers.update(config.headers)
        return HttpxTransport(
            config.base_url,
            headers=headers,
            timeout=config.timeout,
            provider_id=config.provider_id,
        )


class OllamaProvider(ModelProvider):
    """A local (or remote) Ollama server."""

    adapter_class = OllamaAdapter
    capabilities = _WITH_REASONING

    def __init__(self, model: str, *, transport: Transport | None = None, **settings: Any):
        super().__init__(profile_config("ollama", model, **settings), transport)

    def build_transport(self, config: ProviderConfig) -> Transport:
        headers = {}
        api_key = config.resolve_api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        headers.update(config.headers)
        return HttpxTransport(
            config.base_url,
            headers=headers,
            timeout=config.timeout,
            provider_id=config.provider_id,
        )
