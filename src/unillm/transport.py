"""HTTP transports.

A transport turns a request body into either a stream of raw byte
fragments or a decoded JSON body, and maps every failure onto the
:mod:`unillm.errors` taxonomy.  Transports know nothing about wire
formats; decoding happens in :mod:`unillm.decoding`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Mapping, Protocol

import httpx
import openai
from openai import AsyncOpenAI

from unillm.errors import (
    LLMError,
    ProviderError,
    RequestTimeoutError,
    TransportError,
    error_message,
    map_status_code,
)

logger = logging.getLogger(__name__)


class Transport(Protocol):
    def stream(self, path: str, body: dict[str, Any]) -> AsyncIterator[bytes]: ...

    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


class HttpxTransport:
    """Plain ``httpx`` transport used for non-OpenAI wire formats.

    Args:
        base_url: API root; request paths are resolved against it.
        headers: Sent with every request (auth, API version, ...).
        timeout: Seconds before connect/read timeouts fire.
        provider_id: Attached to every raised error.
        client: Pre-built client, mostly for tests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 600.0,
        provider_id: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.provider_id = provider_id
        self.client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            headers=dict(headers or {}),
            timeout=timeout,
        )

    async def stream(self, path: str, body: dict[str, Any]) -> AsyncIterator[bytes]:
        try:
            async with self.client.stream("POST", path, json=body) as response:
                if response.status_code >= 400:
                    raise self._status_error(response.status_code, await response.aread())
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"Request timed out: {e}", provider=self.provider_id
            ) from e
        except httpx.TransportError as e:
            raise TransportError(
                f"Connection error: {e}", provider=self.provider_id
            ) from e

    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.client.post(path, json=body)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                f"Request timed out: {e}", provider=self.provider_id
            ) from e
        except httpx.TransportError as e:
            raise TransportError(
                f"Connection error: {e}", provider=self.provider_id
            ) from e
        if response.status_code >= 400:
            raise self._status_error(response.status_code, response.content)
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise ProviderError(
                f"Invalid JSON response: {e}", provider=self.provider_id
            ) from e

    def _status_error(self, status_code: int, raw: bytes) -> LLMError:
        text = raw.decode("utf-8", errors="replace")
        try:
            data: Any = json.loads(text)
        except json.JSONDecodeError:
            data = text
        message = error_message(data) if data else httpx.codes.get_reason_phrase(status_code)
        logger.debug("HTTP %d from %s: %s", status_code, self.provider_id, text[:500])
        return map_status_code(status_code, message, provider=self.provider_id, data=data)

    async def aclose(self) -> None:
        await self.client.aclose()


def map_openai_error(e: openai.APIError, provider: str | None = None) -> LLMError:
    """Translate an ``openai`` SDK exception into an :class:`LLMError`."""
    if isinstance(e, openai.APITimeoutError):
        return RequestTimeoutError(f"Request timed out: {e.message}", provider=provider)
    if isinstance(e, openai.APIConnectionError):
        return TransportError(f"Connection error: {e.message}", provider=provider)
    if isinstance(e, openai.APIStatusError):
        return map_status_code(e.status_code, e.message, provider=provider, data=e.body)
    return ProviderError(e.message, provider=provider, data=e.body)


class OpenAISDKTransport:
    """Transport for OpenAI-compatible services built on ``AsyncOpenAI``.

    Streaming uses the SDK's raw streaming response so the bytes go
    through the same decoder as every other provider.  Request fields the
    SDK does not know about are forwarded through ``extra_body``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float = 600.0,
        max_retries: int = 2,
        provider_id: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.provider_id = provider_id
        self.client = client or AsyncOpenAI(
            base_url=base_url,
            # Local servers accept any key but the SDK insists on one.
            api_key=api_key or "DUMMY",
            max_retries=max_retries,
            timeout=timeout,
            default_headers=dict(headers or {}),
        )

    @staticmethod
    def _split(body: dict[str, Any]) -> tuple[str, list, dict[str, Any]]:
        params = dict(body)
        model = params.pop("model")
        messages = params.pop("messages")
        params.pop("stream", None)
        return model, messages, params

    async def stream(self, path: str, body: dict[str, Any]) -> AsyncIterator[bytes]:
        model, messages, params = self._split(body)
        try:
            async with self.client.chat.completions.with_streaming_response.create(
                model=model,
                messages=messages,
                stream=True,
                extra_body=params,
            ) as response:
                async for chunk in response.iter_bytes():
                    yield chunk
        except openai.APIError as e:
            raise map_openai_error(e, self.provider_id) from e

    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        model, messages, params = self._split(body)
        try:
            completion = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                extra_body=params,
            )
        except openai.APIError as e:
            raise map_openai_error(e, self.provider_id) from e
        return completion.model_dump()

    async def aclose(self) -> None:
        await self.client.close()
