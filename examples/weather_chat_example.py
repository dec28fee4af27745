"""Streaming chat example: a weather assistant on any provider.

Demonstrates:
- Creating a provider by name from a ProviderRegistry
- Defining tools with @tool (including a context-aware tool)
- Streaming text and reasoning as they arrive with Runner.iter()
- Stopping a slow response with a CancellationToken

Usage:
    uv run --env-file=.env examples/weather_chat_example.py --provider openai --model gpt-4o-mini --trace
    uv run examples/weather_chat_example.py --provider ollama --model qwen3:8b
    uv run examples/weather_chat_example.py --provider vllm --url localhost --model Qwen/Qwen3-8B
"""

import argparse
import asyncio
import random

from unillm.cancellation import CancellationToken
from unillm.events import ReasoningDelta, RunCompleteEvent, RunItemEvent, TextDelta
from unillm.message import Message
from unillm.provider import ModelProvider
from unillm.registry import default_registry
from unillm.runner import Runner
from unillm.tools import tool


def make_provider(provider: str, model: str, url: str | None) -> ModelProvider:
    settings = {}
    if provider == "vllm":
        if not url:
            raise SystemExit("--url is required for vllm provider")
        settings["url"] = url
    elif url:
        settings["base_url"] = url
    return default_registry().create(provider, model, **settings)


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from unillm.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


@tool
def get_weather(city: str):
    """Current weather for a city.

    Args:
        city: City name, e.g. "Oslo".
    """
    return {"city": city, "temp_c": random.randint(-5, 30), "sky": random.choice(["clear", "rain", "clouds"])}


@tool
def favourite_cities(context):
    """List the user's favourite cities."""
    return ", ".join(context["favourites"]) or "None saved."


async def chat_turn(runner: Runner, provider: ModelProvider, transcript: list[Message], context: dict, timeout: float):
    token = CancellationToken()
    timer = asyncio.get_running_loop().call_later(timeout, token.cancel, f"no answer after {timeout}s")
    stream = runner.iter(provider, transcript, [get_weather, favourite_cities], context=context, cancel_token=token)

    thinking = False
    try:
        async for event in stream:
            if isinstance(event, ReasoningDelta):
                if not thinking:
                    print("\n[thinking] ", end="")
                    thinking = True
                print(event.delta, end="", flush=True)
            elif isinstance(event, TextDelta):
                if thinking:
                    print("\n")
                    thinking = False
                print(event.delta, end="", flush=True)
            elif isinstance(event, RunItemEvent) and event.name == "tool_call":
                print(f"\n  -> {event.data['tool_name']}: {event.data['output']}")
            elif isinstance(event, RunCompleteEvent):
                result = event.result
                if result.error is not None:
                    print(f"\n[error] {result.error.message}")
                transcript[:] = result.messages
    finally:
        timer.cancel()
    print()


async def main():
    parser = argparse.ArgumentParser(description="Weather chat")
    parser.add_argument("--provider", choices=default_registry().names(), default="openai")
    parser.add_argument("--model", default="gpt-4o-mini")
    parser.add_argument("--url", default=None)
    parser.add_argument("--timeout", type=float, default=120.0)
    parser.add_argument("--trace", action="store_true")
    args = parser.parse_args()

    if args.trace:
        setup_tracing("weather-chat")

    provider = make_provider(args.provider, args.model, args.url)
    runner = Runner(max_turns=8)
    transcript = [Message.system(
        "You are a concise weather assistant. "
        "Use get_weather for any question about current conditions."
    )]
    context = {"favourites": ["Oslo", "Lisbon"]}

    print(f"Weather chat ({provider.provider_id}/{provider.model})\n")

    try:
        while True:
            try:
                user_input = input("You: ")
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                break

            transcript.append(Message.user(user_input))
            print("Assistant: ", end="", flush=True)
            await chat_turn(runner, provider, transcript, context, args.timeout)
    finally:
        await provider.aclose()


if __name__ == "__main__":
    asyncio.run(main())
