import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from typing import Any

from unillm.cancellation import CancellationToken
from unillm.errors import LLMError
from unillm.events import Error, Finish, RunCompleteEvent, RunEvent, RunItemEvent, StreamPart
from unillm.instrumentation import record_error, tool_span
from unillm.message import Message, MessageRole, ToolCallRequestMessage, ToolCallResultMessage
from unillm.provider import ModelProvider
from unillm.response import ChatResponse
from unillm.streaming import ToolCall
from unillm.tools import LLMRecoverableError, Tool, ToolRegistry, as_registry

logger = logging.getLogger(__name__)

MAX_TURNS_MESSAGE = "Maximum turns reached. Please try again."


@dataclass
class RunResult:
    """The result of a single Runner.run() invocation.

    Args:
        response: The last model response, or ``None`` if the run failed
            before any turn finished.
        messages: The full transcript, including the input messages.
        turns: Number of provider round-trips made.
        error: The terminal error, when the last turn failed.
    """

    response: ChatResponse | None
    messages: list[Message] = field(default_factory=list)
    turns: int = 0
    error: LLMError | None = None

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None


@dataclass
class _ToolOutcome:
    """Result of executing a single tool call."""

    output: str
    is_error: bool


class Runner:
    """Executes the tool-calling loop against one provider.

    Each turn streams a response, executes the finalized tool calls and
    appends the assistant request and tool results to the transcript,
    until the model answers without calling a tool.

    ``run()`` drains ``iter()``.  ``iter()`` is the streaming entry point
    and yields every stream part plus :class:`RunItemEvent` and a final
    :class:`RunCompleteEvent`.

    Args:
        max_turns: Maximum number of provider round-trips before
            returning a timeout message.
        parallel_tool_calls: Run the calls of one turn concurrently.
    """

    def __init__(
        self,
        max_turns: int = 50,
        parallel_tool_calls: bool = True,
    ):
        self.max_turns = max_turns
        self.parallel_tool_calls = parallel_tool_calls

    async def run(
        self,
        provider: ModelProvider,
        messages: list[Message],
        tools: ToolRegistry | Iterable[Tool] | None = None,
        *,
        context: Any = None,
        cancel_token: CancellationToken | None = None,
    ) -> RunResult:
        """Run the loop until a final response, an error or max_turns."""
        result: RunResult | None = None
        async for event in self.iter(
            provider, messages, tools, context=context, cancel_token=cancel_token,
        ):
            if isinstance(event, RunCompleteEvent):
                result = event.result
        if result is None:
            raise RuntimeError("iter() ended without emitting RunCompleteEvent")
        return result

    async def iter(
        self,
        provider: ModelProvider,
        messages: list[Message],
        tools: ToolRegistry | Iterable[Tool] | None = None,
        *,
        context: Any = None,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[StreamPart | RunEvent]:
        """Run the loop, yielding events as execution proceeds.

        Tools that declare a ``context`` parameter receive *context*.
        """
        registry = as_registry(tools)
        transcript = list(messages)
        response: ChatResponse | None = None

        for turn in range(1, self.max_turns + 1):
            response = None
            async for part in provider.stream(transcript, registry, cancel_token):
                yield part
                if isinstance(part, Finish):
                    response = part.response
                elif isinstance(part, Error):
                    yield RunCompleteEvent(result=RunResult(
                        response=None, messages=transcript, turns=turn, error=part.error,
                    ))
                    return

            # No tool calls: final text response
            if not response.tool_calls:
                content = response.text or ""
                transcript.append(Message.assistant(content))
                yield RunItemEvent(name="message", data={"content": content})
                yield RunCompleteEvent(result=RunResult(
                    response=response, messages=transcript, turns=turn,
                ))
                return

            transcript.append(ToolCallRequestMessage(
                role=MessageRole.ASSISTANT,
                content=response.text or "",
                tool_calls=response.tool_calls,
                thinking=response.thinking,
            ))
            outcomes = await self._execute_tools(response.tool_calls, registry, context)
            for tc, outcome in zip(response.tool_calls, outcomes):
                transcript.append(ToolCallResultMessage(
                    role=MessageRole.TOOL,
                    content=outcome.output,
                    tool_call_id=tc.id,
                    tool_name=tc.name,
                    is_error=outcome.is_error,
                ))
                yield RunItemEvent(name="tool_call", data={
                    "tool_name": tc.name, "call_id": tc.id,
                    "output": outcome.output, "is_error": outcome.is_error,
                })

        # Max turns exceeded
        transcript.append(Message.assistant(MAX_TURNS_MESSAGE))
        yield RunCompleteEvent(result=RunResult(
            response=response, messages=transcript, turns=self.max_turns,
        ))

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tools(
        self, calls: list[ToolCall], registry: ToolRegistry, context: Any,
    ) -> list[_ToolOutcome]:
        if self.parallel_tool_calls and len(calls) > 1:
            return list(await asyncio.gather(
                *(self._execute_one(tc, registry, context) for tc in calls)
            ))
        return [await self._execute_one(tc, registry, context) for tc in calls]

    async def _execute_one(self, tc: ToolCall, registry: ToolRegistry, context: Any) -> _ToolOutcome:
        tool_obj = registry.get(tc.name)
        if tool_obj is None:
            logger.warning("Tool not found: %s", tc.name)
            return _ToolOutcome(output=f"Error: tool '{tc.name}' not found", is_error=True)

        try:
            params = json.loads(tc.arguments) if tc.arguments else {}
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in arguments for %s: %s", tc.name, e)
            return _ToolOutcome(output=f"Error: invalid arguments: {e}", is_error=True)
        if not isinstance(params, dict):
            return _ToolOutcome(output="Error: arguments must be a JSON object", is_error=True)

        logger.info("Calling %s with %s", tc.name, params)
        if "context" in inspect.signature(tool_obj.func).parameters:
            params["context"] = context

        async with tool_span(tc.name, tc.id) as span:
            try:
                result = await tool_obj(**params)
            except LLMRecoverableError as e:
                logger.info("Tool %s requested retry: %s", tc.name, e)
                return _ToolOutcome(output=str(e), is_error=False)
            except Exception as e:
                logger.error("Tool %s raised: %s", tc.name, e)
                record_error(span, e)
                return _ToolOutcome(output=f"Error calling {tc.name}: {e}", is_error=True)

        output = result.output
        output_str = output if isinstance(output, str) else json.dumps(output, default=str)
        return _ToolOutcome(output=output_str, is_error=False)
