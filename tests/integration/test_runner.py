import asyncio
import json

import pytest

from tests.conftest import FakeTransport, openai_chunk, sse
from unillm.errors import ErrorKind, RateLimitError
from unillm.events import Finish, RunCompleteEvent, RunItemEvent, TextDelta
from unillm.message import Message, MessageRole, ToolCallRequestMessage, ToolCallResultMessage
from unillm.provider import OpenAIProvider
from unillm.runner import MAX_TURNS_MESSAGE, Runner
from unillm.tools import LLMRecoverableError, tool


# ---------------------------------------------------------------------------
# Tool fixtures (module-level, reused across test classes)
# ---------------------------------------------------------------------------

@tool
def echo(text: str):
    """Echo text back."""
    return text


@tool
def get_data():
    """Return structured data."""
    return {"items": [1, 2, 3]}


@tool
def context_reader(context, query: str):
    """Reads the user name from context."""
    return f"user={context['user']}, query={query}"


@tool
async def slow_echo(text: str, delay: float):
    """Echo after a delay."""
    await asyncio.sleep(delay)
    return text


@tool
def flaky(value: str):
    """Asks the model to retry."""
    raise LLMRecoverableError(f"'{value}' is not valid, use an integer")


@tool
def broken():
    """Always fails."""
    raise RuntimeError("database down")


# ---------------------------------------------------------------------------
# Scripted turns
# ---------------------------------------------------------------------------

def text_turn(text):
    return [sse(openai_chunk({"content": text}, finish_reason="stop"))]


def tool_turn(*calls):
    """One streamed turn requesting ``(name, arguments)`` calls."""
    chunks = [
        openai_chunk({"tool_calls": [{
            "index": i,
            "id": f"call_{i}",
            "function": {"name": name, "arguments": json.dumps(arguments)},
        }]})
        for i, (name, arguments) in enumerate(calls)
    ]
    return [sse(*chunks, openai_chunk(finish_reason="tool_calls"))]


def make_provider(*turns):
    return OpenAIProvider("gpt-test", api_key="sk", transport=FakeTransport(streams=list(turns)))


def sent_messages(provider, turn):
    return provider.transport.requests[turn][1]["messages"]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestRunnerSimpleResponse:
    @pytest.mark.asyncio
    async def test_appends_assistant_message(self):
        provider = make_provider(text_turn("Hello!"))
        result = await Runner().run(provider, [Message.user("Hi")])

        assert result.last_message.content == "Hello!"
        assert result.last_message.role == MessageRole.ASSISTANT
        assert result.response.text == "Hello!"
        assert result.turns == 1
        assert result.error is None
        assert len(result.messages) == 2

    @pytest.mark.asyncio
    async def test_input_list_not_mutated(self):
        messages = [Message.user("Hi")]
        await Runner().run(make_provider(text_turn("Hello!")), messages)
        assert len(messages) == 1


class TestRunnerToolCalls:
    @pytest.mark.asyncio
    async def test_tool_call_then_response(self):
        provider = make_provider(tool_turn(("echo", {"text": "hi"})), text_turn("Done"))
        result = await Runner().run(provider, [Message.user("Say hi")], [echo])

        assert result.last_message.content == "Done"
        assert result.turns == 2
        # user, tool_call_request, tool_result, assistant
        request, outcome = result.messages[1], result.messages[2]
        assert isinstance(request, ToolCallRequestMessage)
        assert request.tool_calls[0].id == "call_0"
        assert isinstance(outcome, ToolCallResultMessage)
        assert (outcome.content, outcome.tool_call_id, outcome.tool_name) == ("hi", "call_0", "echo")

        second = sent_messages(provider, 1)
        assert second[1]["tool_calls"][0]["function"]["name"] == "echo"
        assert second[2] == {"role": "tool", "tool_call_id": "call_0", "content": "hi"}

    @pytest.mark.asyncio
    async def test_structured_output_serialized(self):
        provider = make_provider(tool_turn(("get_data", {})), text_turn("ok"))
        result = await Runner().run(provider, [Message.user("data?")], [get_data])
        assert json.loads(result.messages[2].content) == {"items": [1, 2, 3]}

    @pytest.mark.asyncio
    async def test_context_injection(self):
        provider = make_provider(tool_turn(("context_reader", {"query": "test"})), text_turn("ok"))
        result = await Runner().run(
            provider, [Message.user("go")], [context_reader], context={"user": "ada"},
        )
        assert result.messages[2].content == "user=ada, query=test"

    @pytest.mark.asyncio
    async def test_multiple_calls_one_request_message(self):
        provider = make_provider(
            tool_turn(("echo", {"text": "a"}), ("echo", {"text": "b"})),
            text_turn("both"),
        )
        result = await Runner().run(provider, [Message.user("go")], [echo])

        requests = [m for m in result.messages if isinstance(m, ToolCallRequestMessage)]
        outcomes = [m for m in result.messages if isinstance(m, ToolCallResultMessage)]
        assert len(requests) == 1
        assert [c.id for c in requests[0].tool_calls] == ["call_0", "call_1"]
        assert [m.content for m in outcomes] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_parallel_calls_keep_order(self):
        provider = make_provider(
            tool_turn(
                ("slow_echo", {"text": "first", "delay": 0.05}),
                ("slow_echo", {"text": "second", "delay": 0}),
            ),
            text_turn("done"),
        )
        result = await Runner(parallel_tool_calls=True).run(provider, [Message.user("go")], [slow_echo])
        outcomes = [m.content for m in result.messages if isinstance(m, ToolCallResultMessage)]
        assert outcomes == ["first", "second"]


class TestRunnerToolErrors:
    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        provider = make_provider(tool_turn(("missing", {})), text_turn("sorry"))
        result = await Runner().run(provider, [Message.user("go")], [echo])

        assert result.messages[2].is_error
        assert "not found" in result.messages[2].content
        assert result.last_message.content == "sorry"

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_error_result(self):
        provider = make_provider(tool_turn(("broken", {})), text_turn("failed"))
        result = await Runner().run(provider, [Message.user("go")], [broken])

        assert result.messages[2].is_error
        assert result.messages[2].content == "Error calling broken: database down"

    @pytest.mark.asyncio
    async def test_recoverable_error_goes_back_to_model(self):
        provider = make_provider(tool_turn(("flaky", {"value": "x"})), text_turn("retrying"))
        result = await Runner().run(provider, [Message.user("go")], [flaky])

        assert not result.messages[2].is_error
        assert result.messages[2].content == "'x' is not valid, use an integer"

    @pytest.mark.asyncio
    async def test_invalid_json_arguments(self):
        turn = [sse(openai_chunk({"tool_calls": [{
            "index": 0, "id": "call_0", "function": {"name": "echo", "arguments": "{not json"},
        }]}))]
        result = await Runner().run(make_provider(turn, text_turn("ok")), [Message.user("go")], [echo])

        assert result.messages[2].is_error
        assert result.messages[2].content.startswith("Error: invalid arguments")


class TestRunnerLimits:
    @pytest.mark.asyncio
    async def test_max_turns(self):
        provider = make_provider(*(tool_turn(("echo", {"text": "again"})) for _ in range(3)))
        result = await Runner(max_turns=3).run(provider, [Message.user("loop")], [echo])

        assert result.last_message.content == MAX_TURNS_MESSAGE
        assert result.turns == 3
        assert len(provider.transport.requests) == 3

    @pytest.mark.asyncio
    async def test_stream_error_ends_run(self):
        transport = FakeTransport(error=RateLimitError("HTTP 429: slow down", status_code=429))
        provider = OpenAIProvider("gpt-test", api_key="sk", transport=transport)
        result = await Runner().run(provider, [Message.user("Hi")])

        assert result.response is None
        assert result.error.kind is ErrorKind.RATE_LIMIT
        assert result.turns == 1


class TestRunnerIter:
    @pytest.mark.asyncio
    async def test_event_order(self):
        provider = make_provider(tool_turn(("echo", {"text": "hi"})), text_turn("Done"))
        events = [e async for e in Runner().iter(provider, [Message.user("go")], [echo])]

        items = [e for e in events if isinstance(e, RunItemEvent)]
        assert [e.name for e in items] == ["tool_call", "message"]
        assert items[0].data == {"tool_name": "echo", "call_id": "call_0", "output": "hi", "is_error": False}
        assert sum(isinstance(e, Finish) for e in events) == 2
        assert any(isinstance(e, TextDelta) and e.delta == "Done" for e in events)
        assert isinstance(events[-1], RunCompleteEvent)
        assert events[-1].result.last_message.content == "Done"
