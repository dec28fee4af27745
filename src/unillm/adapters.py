"""Per-provider interpretation of wire records.

An adapter is created for every call.  It renders the request body, maps
each decoded streaming record onto :class:`~unillm.emitter.StreamPartEmitter`
calls, and parses non-streaming bodies into a
:class:`~unillm.response.ChatResponse` with the same rules.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable

from pydantic import ValidationError

from unillm.config import ProviderConfig
from unillm.decoding import Framing
from unillm.emitter import StreamPartEmitter
from unillm.errors import (
    AuthError,
    InvalidRequestError,
    LLMError,
    ProviderError,
    RateLimitError,
    error_message,
)
from unillm.events import StreamPart
from unillm.message import Message, MessageRole, ToolCallRequestMessage, ToolCallResultMessage
from unillm.response import ChatResponse, ResponseSynthesizer, UsageInfo
from unillm.streaming import FragmentMode, ToolCallAccumulator, ToolCallFragment
from unillm.tools import ToolRegistry, parse_tool_calls_from_text
from unillm.wire import (
    ANTHROPIC_EVENTS,
    AnthropicContentBlockDelta,
    AnthropicContentBlockStart,
    AnthropicContentBlockStop,
    AnthropicErrorEvent,
    AnthropicMessage,
    AnthropicMessageDelta,
    AnthropicMessageStart,
    AnthropicUsage,
    OllamaChunk,
    OpenAIChunk,
    OpenAICompletion,
    OpenAIUsage,
)

logger = logging.getLogger(__name__)


class ThinkTagSplitter:
    """Separates ``<think>...</think>`` spans from streamed content.

    Tags may be split across chunks; a trailing partial tag is held back
    until the next chunk decides it.
    """

    OPEN = "<think>"
    CLOSE = "</think>"

    def __init__(self) -> None:
        self.inside = False
        self._pending = ""
        self._strip_next = False

    def feed(self, chunk: str) -> list[tuple[str, str]]:
        buf = self._pending + chunk
        self._pending = ""
        pieces: list[tuple[str, str]] = []
        while buf:
            tag = self.CLOSE if self.inside else self.OPEN
            idx = buf.find(tag)
            if idx >= 0:
                self._emit(pieces, buf[:idx])
                buf = buf[idx + len(tag):]
                self._strip_next = self.inside
                self.inside = not self.inside
                continue
            hold = 0
            for k in range(min(len(tag) - 1, len(buf)), 0, -1):
                if tag.startswith(buf[-k:]):
                    hold = k
                    break
            self._emit(pieces, buf[:len(buf) - hold])
            self._pending = buf[len(buf) - hold:]
            break
        return pieces

    def flush(self) -> list[tuple[str, str]]:
        pieces: list[tuple[str, str]] = []
        self._emit(pieces, self._pending)
        self._pending = ""
        return pieces

    def _emit(self, pieces: list[tuple[str, str]], text: str) -> None:
        if self._strip_next and not self.inside:
            text = text.lstrip()
            if text:
                self._strip_next = False
        if text:
            pieces.append(("reasoning" if self.inside else "text", text))


_THINK_BLOCK = re.compile(r"<think>(.*?)</think>", re.DOTALL)


def split_think_tags(content: str) -> tuple[str | None, str | None]:
    """Split a complete message into ``(text, thinking)``."""
    thoughts = [m.strip() for m in _THINK_BLOCK.findall(content)]
    if not thoughts:
        return content, None
    text = _THINK_BLOCK.sub("", content).strip()
    return text or None, "\n".join(thoughts)


def _arguments_json(arguments: Any) -> str:
    if arguments is None:
        return ""
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments)


def _loads_or_empty(arguments: str) -> Any:
    try:
        return json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        return {}


class StreamAdapter:
    """Base class for provider adapters.

    Subclasses implement ``_handle`` (one streaming record),
    ``build_request`` and ``parse_response``.

    Args:
        config: The provider's configuration.
        tools: Tools offered in this request.
    """

    framing: Framing = Framing.SSE
    chat_path: str = "chat/completions"

    def __init__(self, config: ProviderConfig, tools: ToolRegistry | None = None):
        self.config = config
        self.tools = tools or ToolRegistry()
        self.rejected = 0

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    @property
    def fragment_mode(self) -> FragmentMode:
        return self.config.fragment_mode

    def new_emitter(self) -> StreamPartEmitter:
        return StreamPartEmitter(self.provider_id, ToolCallAccumulator(self.fragment_mode))

    def handle(self, record: dict[str, Any], emitter: StreamPartEmitter) -> list[StreamPart]:
        """Interpret one decoded record.

        Records that fail validation are skipped and counted in
        ``rejected``.
        """
        try:
            return self._handle(record, emitter)
        except ValidationError as e:
            self.rejected += 1
            logger.warning("Skipping invalid %s record: %s", self.provider_id, e.errors()[:3])
            return []

    def _handle(self, record: dict[str, Any], emitter: StreamPartEmitter) -> list[StreamPart]:
        raise NotImplementedError

    def finish(self, emitter: StreamPartEmitter, best_effort: bool = False) -> list[StreamPart]:
        parts = self._flush(emitter)
        parts.extend(self._recover_text_tool_calls(emitter))
        parts.extend(emitter.finish(best_effort=best_effort))
        return parts

    def _flush(self, emitter: StreamPartEmitter) -> list[StreamPart]:
        return []

    def fail(self, emitter: StreamPartEmitter, error: LLMError) -> list[StreamPart]:
        if error.provider is None:
            error.provider = self.provider_id
        return emitter.fail(error)

    # ------------------------------------------------------------------
    # Text tool-call fallback
    # ------------------------------------------------------------------

    def _text_fallback_enabled(self) -> bool:
        return self.config.parse_tool_calls_from_text and bool(self.tools)

    def _recover_text_tool_calls(self, emitter: StreamPartEmitter) -> list[StreamPart]:
        if not self._text_fallback_enabled() or emitter.started_tool_calls:
            return []
        calls = parse_tool_calls_from_text(emitter.synthesizer.text or "", self.tools.names())
        if not calls:
            return []
        parts = emitter.end_text()
        for name, arguments in calls:
            parts.extend(emitter.inject_tool_call(name, arguments))
        return parts

    def _with_text_tool_calls(self, response: ChatResponse) -> ChatResponse:
        if not self._text_fallback_enabled() or response.tool_calls:
            return response
        acc = ToolCallAccumulator()
        for i, (name, arguments) in enumerate(
            parse_tool_calls_from_text(response.text or "", self.tools.names())
        ):
            acc.add_delta(ToolCallFragment(key=i, name=name, arguments=arguments))
        if len(acc):
            response.tool_calls = acc.finalize()
        return response

    # ------------------------------------------------------------------
    # Requests and non-streaming responses
    # ------------------------------------------------------------------

    def build_request(self, messages: Iterable[Message], stream: bool) -> dict[str, Any]:
        raise NotImplementedError

    def parse_response(self, body: dict[str, Any]) -> ChatResponse:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------

class OpenAICompatibleAdapter(StreamAdapter):
    """OpenAI chat-completions wire format.

    Argument fragments are appended per ``index``.  ``finish_reason`` is
    recorded but the stream only finishes on ``[DONE]`` (or when the
    transport closes) so a trailing usage-only chunk is not lost.
    """

    def __init__(self, config: ProviderConfig, tools: ToolRegistry | None = None):
        super().__init__(config, tools)
        self._think = ThinkTagSplitter() if config.think_tags else None
        self._index_keys: dict[int, Any] = {}
        self._index_ids: dict[int, str] = {}
        self._reused = 0

    def _handle(self, record, emitter):
        chunk = OpenAIChunk.model_validate(record)
        if chunk.error is not None:
            return self.fail(emitter, ProviderError(error_message(chunk.error), data=record))

        self._collect_metadata(chunk, emitter)
        if chunk.usage is not None:
            emitter.set_usage(self._usage(chunk.usage))

        choice = next((c for c in chunk.choices if c.index == 0), None)
        if choice is None:
            return []

        parts: list[StreamPart] = []
        delta = choice.delta
        if delta is not None:
            parts.extend(emitter.reasoning(delta.reasoning_text))
            if delta.content:
                parts.extend(self._content(delta.content, emitter))
            for position, tc in enumerate(delta.tool_calls or []):
                fn = tc.function
                parts.extend(emitter.tool_call(ToolCallFragment(
                    key=self._tool_key(position, tc),
                    call_id=tc.id,
                    name=fn.name if fn else None,
                    arguments=fn.arguments if fn else None,
                )))
        emitter.set_finish_reason(choice.finish_reason)
        return parts

    def _tool_key(self, position: int, tc) -> Any:
        if tc.index is None:
            return tc.id or f"position_{position}"
        # A new id at an index already in use starts a new call.
        known = self._index_ids.get(tc.index)
        if tc.id and known and tc.id != known:
            self._index_keys[tc.index] = ("reused", tc.index, self._reused)
            self._reused += 1
        if tc.id:
            self._index_ids[tc.index] = tc.id
        return self._index_keys.get(tc.index, tc.index)

    def _content(self, content: str, emitter: StreamPartEmitter) -> list[StreamPart]:
        if self._think is None:
            return emitter.text(content)
        return self._route(self._think.feed(content), emitter)

    def _flush(self, emitter):
        if self._think is None:
            return []
        return self._route(self._think.flush(), emitter)

    @staticmethod
    def _route(pieces, emitter) -> list[StreamPart]:
        parts: list[StreamPart] = []
        for kind, piece in pieces:
            if kind == "reasoning":
                parts.extend(emitter.reasoning(piece))
            else:
                parts.extend(emitter.text(piece))
        return parts

    def _collect_metadata(self, chunk: OpenAIChunk | OpenAICompletion, emitter) -> None:
        emitter.add_metadata({
            "id": chunk.id,
            "model": chunk.model,
            "system_fingerprint": chunk.system_fingerprint,
        })

    @staticmethod
    def _usage(usage: OpenAIUsage) -> UsageInfo | None:
        return UsageInfo.from_counts(
            usage.prompt_tokens,
            usage.completion_tokens,
            usage.total_tokens,
            usage.reasoning_tokens,
        )

    # ------------------------------------------------------------------

    def build_request(self, messages, stream):
        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": [self._render(m) for m in messages],
            "stream": stream,
        }
        if stream and self.config.include_usage:
            body["stream_options"] = {"include_usage": True}
        for key in ("temperature", "max_tokens", "top_p", "stop"):
            value = getattr(self.config, key)
            if value is not None:
                body[key] = value
        if self.tools:
            body["tools"] = self.tools.schemas()
            body["tool_choice"] = "auto"
        body.update(self.config.options_for())
        return body

    @staticmethod
    def _render(message: Message) -> dict[str, Any]:
        if isinstance(message, ToolCallResultMessage):
            return {
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content,
            }
        rendered = {"role": message.role.value, "content": message.content}
        if isinstance(message, ToolCallRequestMessage) and message.tool_calls:
            rendered["tool_calls"] = [t.to_openai() for t in message.tool_calls]
            rendered["content"] = message.content or None
        return rendered

    def parse_response(self, body):
        completion = OpenAICompletion.model_validate(body)
        synthesizer = ResponseSynthesizer(self.provider_id)
        emitter_meta = _MetadataSink(synthesizer)
        self._collect_metadata(completion, emitter_meta)
        if completion.usage is not None:
            synthesizer.usage = self._usage(completion.usage)

        choice = next((c for c in completion.choices if c.index == 0), None)
        if choice is None:
            return synthesizer.build()
        message = choice.message
        synthesizer.finish_reason = choice.finish_reason

        text, thinking = message.content, message.reasoning_text
        if text and self.config.think_tags:
            text, tagged = split_think_tags(text)
            thinking = thinking or tagged
        if thinking:
            synthesizer.append_reasoning(thinking)
        if text:
            synthesizer.append_text(text)

        acc = ToolCallAccumulator()
        for i, tc in enumerate(message.tool_calls or []):
            acc.add_delta(ToolCallFragment(
                key=i,
                call_id=tc.id,
                name=tc.function.name,
                arguments=_arguments_json(tc.function.arguments),
            ))
        return self._with_text_tool_calls(synthesizer.build(acc.finalize()))


class _MetadataSink:
    """Lets metadata collectors written against the emitter target a bare
    synthesizer when parsing non-streaming bodies."""

    def __init__(self, synthesizer: ResponseSynthesizer):
        self.synthesizer = synthesizer

    def add_metadata(self, values) -> None:
        self.synthesizer.update_metadata(values)


class XAIAdapter(OpenAICompatibleAdapter):
    """xAI speaks the OpenAI format and adds live-search ``citations``."""

    def _collect_metadata(self, chunk, emitter) -> None:
        super()._collect_metadata(chunk, emitter)
        if chunk.citations:
            emitter.add_metadata({"citations": list(chunk.citations)})


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

_ANTHROPIC_ERRORS: dict[str, type[LLMError]] = {
    "authentication_error": AuthError,
    "permission_error": AuthError,
    "rate_limit_error": RateLimitError,
    "overloaded_error": RateLimitError,
    "invalid_request_error": InvalidRequestError,
}

_DEFAULT_ANTHROPIC_MAX_TOKENS = 4096


class AnthropicAdapter(StreamAdapter):
    """Anthropic Messages API event stream.

    Tool calls are keyed by content-block index and always carry explicit
    ids.  Text and thinking blocks map onto text and reasoning runs, so a
    response with several text blocks yields several TextStart/TextEnd
    pairs.
    """

    chat_path = "messages"

    def __init__(self, config: ProviderConfig, tools: ToolRegistry | None = None):
        super().__init__(config, tools)
        self._block_types: dict[int, str] = {}
        self._tool_ids: dict[int, str] = {}
        self._prefilled: set[int] = set()
        self._usage: dict[str, int] = {}
        self._citations: list[dict[str, Any]] = []
        self._server_blocks: list[dict[str, Any]] = []

    def _handle(self, record, emitter):
        model = ANTHROPIC_EVENTS.get(record.get("type"))
        if model is None:
            logger.debug("Ignoring unknown anthropic event %r", record.get("type"))
            return []
        event = model.model_validate(record)

        if isinstance(event, AnthropicMessageStart):
            return self._message_start(event, emitter)
        if isinstance(event, AnthropicContentBlockStart):
            return self._block_start(event, emitter)
        if isinstance(event, AnthropicContentBlockDelta):
            return self._block_delta(event, emitter)
        if isinstance(event, AnthropicContentBlockStop):
            return self._block_stop(event, emitter)
        if isinstance(event, AnthropicMessageDelta):
            emitter.set_finish_reason(event.delta.stop_reason)
            emitter.add_metadata({"stop_sequence": event.delta.stop_sequence})
            self._merge_usage(event.usage, emitter)
            return []
        if isinstance(event, AnthropicErrorEvent):
            cls = _ANTHROPIC_ERRORS.get(event.error.get("type"), ProviderError)
            return self.fail(emitter, cls(error_message(event.error), data=record))
        if record["type"] == "message_stop":
            return self.finish(emitter)
        return []

    def _message_start(self, event: AnthropicMessageStart, emitter) -> list[StreamPart]:
        message = event.message
        emitter.add_metadata({"id": message.id, "model": message.model})
        self._merge_usage(message.usage, emitter)

        parts: list[StreamPart] = []
        # Programmatic tool use can arrive fully formed in message_start.
        for i, block in enumerate(message.content):
            if block.type != "tool_use" or not block.id:
                continue
            parts.extend(emitter.tool_call(ToolCallFragment(
                key=("prefilled", i),
                call_id=block.id,
                name=block.name,
                arguments=_arguments_json(block.input or {}),
            )))
            parts.extend(emitter.end_tool_call(block.id))
        return parts

    def _block_start(self, event: AnthropicContentBlockStart, emitter) -> list[StreamPart]:
        block = event.content_block
        self._block_types[event.index] = block.type

        if block.type == "text":
            parts = emitter.end_text()
            parts.extend(emitter.text(block.text))
            self._citations.extend(block.citations or [])
            return parts
        if block.type == "thinking":
            parts = emitter.end_reasoning()
            parts.extend(emitter.reasoning(block.thinking))
            return parts
        if block.type == "redacted_thinking":
            emitter.add_metadata({"redacted_thinking": True})
            return []
        if block.type == "tool_use":
            arguments = ""
            if block.input:
                arguments = json.dumps(block.input)
                self._prefilled.add(event.index)
            self._tool_ids[event.index] = block.id or ""
            return emitter.tool_call(ToolCallFragment(
                key=event.index,
                call_id=block.id,
                name=block.name,
                arguments=arguments,
            ))
        # Server-side tools run at the provider; never surfaced as local calls.
        self._server_blocks.append(block.model_dump(exclude_none=True))
        emitter.add_metadata({"server_tool_blocks": list(self._server_blocks)})
        return []

    def _block_delta(self, event: AnthropicContentBlockDelta, emitter) -> list[StreamPart]:
        delta = event.delta
        if delta.type == "text_delta":
            return emitter.text(delta.text)
        if delta.type == "thinking_delta":
            return emitter.reasoning(delta.thinking)
        if delta.type == "signature_delta":
            emitter.add_metadata({"thinking_signature": delta.signature})
            return []
        if delta.type == "citations_delta" and delta.citation:
            self._citations.append(delta.citation)
            emitter.add_metadata({"citations": list(self._citations)})
            return []
        if delta.type == "input_json_delta":
            if event.index not in self._tool_ids or event.index in self._prefilled:
                return []
            return emitter.tool_call(ToolCallFragment(
                key=event.index, arguments=delta.partial_json or "",
            ))
        return []

    def _block_stop(self, event: AnthropicContentBlockStop, emitter) -> list[StreamPart]:
        block_type = self._block_types.get(event.index)
        if block_type == "text":
            return emitter.end_text()
        if block_type == "thinking":
            return emitter.end_reasoning()
        if block_type == "tool_use":
            snapshot = emitter.accumulator.snapshot(event.index)
            if snapshot is not None:
                return emitter.end_tool_call(snapshot.id)
        return []

    def _merge_usage(self, usage: AnthropicUsage | None, emitter) -> None:
        if usage is None:
            return
        for key, value in usage.model_dump(exclude_none=True).items():
            if isinstance(value, int):
                self._usage[key] = value
        emitter.set_usage(UsageInfo.from_counts(
            self._usage.get("input_tokens"),
            self._usage.get("output_tokens"),
        ))
        cache = {k: v for k, v in self._usage.items() if k.startswith("cache_")}
        if cache:
            emitter.add_metadata(cache)

    # ------------------------------------------------------------------

    def build_request(self, messages, stream):
        system = []
        rendered: list[dict[str, Any]] = []
        for message in messages:
            if message.role is MessageRole.SYSTEM:
                system.append(message.content)
                continue
            entry = self._render(message)
            # Consecutive tool results share one user turn.
            if (
                isinstance(message, ToolCallResultMessage)
                and rendered
                and rendered[-1]["role"] == "user"
                and isinstance(rendered[-1]["content"], list)
                and rendered[-1]["content"]
                and rendered[-1]["content"][-1].get("type") == "tool_result"
            ):
                rendered[-1]["content"].extend(entry["content"])
            else:
                rendered.append(entry)

        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": rendered,
            "max_tokens": self.config.max_tokens or _DEFAULT_ANTHROPIC_MAX_TOKENS,
            "stream": stream,
        }
        if system:
            body["system"] = "\n\n".join(system)
        for key in ("temperature", "top_p", "top_k"):
            value = getattr(self.config, key)
            if value is not None:
                body[key] = value
        if self.config.stop:
            body["stop_sequences"] = list(self.config.stop)
        if self.config.reasoning:
            body["thinking"] = {
                "type": "enabled",
                "budget_tokens": self.config.reasoning_budget_tokens or 1024,
            }
        if self.tools:
            body["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters_schema,
                }
                for t in self.tools
            ]
        body.update(self.config.options_for())
        return body

    @staticmethod
    def _render(message: Message) -> dict[str, Any]:
        if isinstance(message, ToolCallResultMessage):
            return {
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.content,
                    "is_error": message.is_error,
                }],
            }
        if isinstance(message, ToolCallRequestMessage) and message.tool_calls:
            content: list[dict[str, Any]] = []
            if message.content:
                content.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                content.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": _loads_or_empty(call.arguments),
                })
            return {"role": "assistant", "content": content}
        return {"role": message.role.value, "content": message.content}

    def parse_response(self, body):
        message = AnthropicMessage.model_validate(body)
        synthesizer = ResponseSynthesizer(self.provider_id)
        synthesizer.finish_reason = message.stop_reason
        synthesizer.update_metadata({
            "id": message.id,
            "model": message.model,
            "stop_sequence": message.stop_sequence,
        })
        if message.usage is not None:
            synthesizer.usage = UsageInfo.from_counts(
                message.usage.input_tokens, message.usage.output_tokens,
            )

        acc = ToolCallAccumulator()
        citations = []
        for i, block in enumerate(message.content):
            if block.type == "text" and block.text:
                synthesizer.append_text(block.text)
                citations.extend(block.citations or [])
            elif block.type == "thinking" and block.thinking:
                synthesizer.append_reasoning(block.thinking)
            elif block.type == "tool_use":
                acc.add_delta(ToolCallFragment(
                    key=i,
                    call_id=block.id,
                    name=block.name,
                    arguments=_arguments_json(block.input or {}),
                ))
        if citations:
            synthesizer.update_metadata({"citations": citations})
        return self._with_text_tool_calls(synthesizer.build(acc.finalize()))


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------

_OLLAMA_METADATA = (
    "model",
    "created_at",
    "total_duration",
    "load_duration",
    "prompt_eval_duration",
    "eval_duration",
)


class OllamaAdapter(StreamAdapter):
    """Ollama ``/api/chat`` NDJSON stream.

    Ollama sends each tool call complete, with its arguments as an object
    and no id, so calls are merged with replace semantics and get
    synthesized ids.  A line with ``done: true`` ends the stream.
    """

    framing = Framing.NDJSON
    chat_path = "api/chat"

    def __init__(self, config: ProviderConfig, tools: ToolRegistry | None = None):
        super().__init__(config, tools)
        self._observations = 0

    @property
    def fragment_mode(self) -> FragmentMode:
        return FragmentMode.REPLACE

    def _handle(self, record, emitter):
        chunk = OllamaChunk.model_validate(record)
        if chunk.error:
            return self.fail(emitter, ProviderError(chunk.error, data=record))

        parts: list[StreamPart] = []
        message = chunk.message
        if message is not None:
            parts.extend(emitter.reasoning(message.thinking))
            for position, tc in enumerate(message.tool_calls or []):
                parts.extend(emitter.tool_call(self._fragment(position, tc.function, emitter)))
            parts.extend(emitter.text(message.content))
        parts.extend(emitter.text(chunk.response))

        if chunk.done:
            self._collect_metadata(chunk, emitter)
            emitter.set_finish_reason(chunk.done_reason)
            emitter.set_usage(UsageInfo.from_counts(chunk.prompt_eval_count, chunk.eval_count))
            parts.extend(self.finish(emitter))
        return parts

    def _fragment(self, position, function, emitter) -> ToolCallFragment:
        if function.index is not None:
            key: Any = ("index", function.index)
        else:
            key = ("position", position)
        # A different tool at a position already taken is a new call, not
        # a resend of the old one.
        known = emitter.accumulator.name_for(key)
        if known and function.name and known != function.name:
            key = ("observation", self._observations)
        self._observations += 1
        return ToolCallFragment(
            key=key,
            name=function.name,
            arguments=_arguments_json(function.arguments if function.arguments is not None else {}),
        )

    @staticmethod
    def _collect_metadata(chunk: OllamaChunk, sink) -> None:
        sink.add_metadata({name: getattr(chunk, name) for name in _OLLAMA_METADATA})

    # ------------------------------------------------------------------

    def build_request(self, messages, stream):
        body: dict[str, Any] = {
            "model": self.config.model,
            "messages": [self._render(m) for m in messages],
            "stream": stream,
        }
        options: dict[str, Any] = {}
        if self.config.temperature is not None:
            options["temperature"] = self.config.temperature
        if self.config.max_tokens is not None:
            options["num_predict"] = self.config.max_tokens
        if self.config.top_p is not None:
            options["top_p"] = self.config.top_p
        if self.config.top_k is not None:
            options["top_k"] = self.config.top_k
        if self.config.stop:
            options["stop"] = list(self.config.stop)

        extra = self.config.options_for()
        options.update(extra.pop("options", {}))
        if options:
            body["options"] = options
        if self.config.reasoning:
            body["think"] = True
        if self.tools:
            body["tools"] = self.tools.schemas()
        body.update(extra)
        return body

    @staticmethod
    def _render(message: Message) -> dict[str, Any]:
        if isinstance(message, ToolCallResultMessage):
            return {"role": "tool", "tool_name": message.tool_name, "content": message.content}
        rendered: dict[str, Any] = {"role": message.role.value, "content": message.content}
        if isinstance(message, ToolCallRequestMessage) and message.tool_calls:
            rendered["tool_calls"] = [
                {"function": {"name": c.name, "arguments": _loads_or_empty(c.arguments)}}
                for c in message.tool_calls
            ]
        return rendered

    def parse_response(self, body):
        chunk = OllamaChunk.model_validate(body)
        if chunk.error:
            raise ProviderError(chunk.error, provider=self.provider_id, data=body)

        synthesizer = ResponseSynthesizer(self.provider_id)
        self._collect_metadata(chunk, _MetadataSink(synthesizer))
        synthesizer.finish_reason = chunk.done_reason
        synthesizer.usage = UsageInfo.from_counts(chunk.prompt_eval_count, chunk.eval_count)

        acc = ToolCallAccumulator(FragmentMode.REPLACE)
        message = chunk.message
        if message is not None:
            if message.thinking:
                synthesizer.append_reasoning(message.thinking)
            if message.content:
                synthesizer.append_text(message.content)
            for i, tc in enumerate(message.tool_calls or []):
                acc.add_delta(ToolCallFragment(
                    key=i,
                    name=tc.function.name,
                    arguments=_arguments_json(tc.function.arguments if tc.function.arguments is not None else {}),
                ))
        if chunk.response:
            synthesizer.append_text(chunk.response)
        return self._with_text_tool_calls(synthesizer.build(acc.finalize()))
