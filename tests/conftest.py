import asyncio
import json
from typing import Any

import pytest

from unillm.config import ProviderConfig
from unillm.events import StreamPart
from unillm.tools import tool


# ---------------------------------------------------------------------------
# Wire builders
# ---------------------------------------------------------------------------

def sse(*records: Any, done: bool = True) -> bytes:
    """Encode records as an SSE body, optionally ending with ``[DONE]``."""
    events = [f"data: {json.dumps(r)}\n\n" for r in records]
    if done:
        events.append("data: [DONE]\n\n")
    return "".join(events).encode("utf-8")


def ndjson(*records: Any) -> bytes:
    return "".join(json.dumps(r) + "\n" for r in records).encode("utf-8")


def chunked(data: bytes, size: int) -> list[bytes]:
    """Split *data* into fixed-size pieces (splits UTF-8 and JSON anywhere)."""
    return [data[i:i + size] for i in range(0, len(data), size)]


async def fragments(*chunks: bytes | str):
    for chunk in chunks:
        yield chunk


async def collect(parts) -> list[StreamPart]:
    return [p async for p in parts]


def openai_chunk(delta: dict | None = None, finish_reason: str | None = None, **extra) -> dict:
    """One OpenAI ``chat.completion.chunk`` record."""
    record = {
        "id": "chatcmpl-1",
        "model": "gpt-test",
        "choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}],
    }
    record.update(extra)
    return record


# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------

class FakeTransport:
    """Transport that replays queued bodies. No network calls.

    ``streams`` holds one list of fragments per streaming call and
    ``bodies`` one JSON body per non-streaming call.  Setting ``hang``
    makes a stream block after its fragments until the read is cancelled.
    """

    def __init__(self, streams=None, bodies=None, error: Exception | None = None):
        self.streams: list[list[bytes | str]] = list(streams or [])
        self.bodies: list[dict] = list(bodies or [])
        self.error = error
        self.hang = False
        self.requests: list[tuple[str, dict]] = []
        self.closed = False
        self.read_cancelled = False

    async def stream(self, path: str, body: dict):
        self.requests.append((path, body))
        if self.error is not None:
            raise self.error
        for chunk in self.streams.pop(0):
            await asyncio.sleep(0)
            yield chunk
        if self.hang:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.read_cancelled = True
                raise

    async def post(self, path: str, body: dict) -> dict:
        self.requests.append((path, body))
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()
        return self.bodies.pop(0)

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def openai_config():
    return ProviderConfig(
        provider_id="openai",
        model="gpt-test",
        base_url="https://api.example.com/v1/",
        api_key="sk-test",
    )


@pytest.fixture
def weather_tool():
    @tool
    def get_weather(city: str):
        """Current weather for a city.

        Args:
            city: City name.
        """
        return {"city": city, "temp": 18}
    return get_weather


@pytest.fixture
def echo_tool():
    @tool
    def echo(text: str):
        """Echo the input."""
        return text
    return echo
