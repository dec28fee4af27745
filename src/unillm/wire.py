"""Validated shapes of provider wire records.

Adapters validate every decoded record against these models before
reading it, so the rest of the engine never touches raw provider JSON.
Unknown fields are kept (``extra="allow"``) so they can be surfaced as
provider metadata.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------------
# OpenAI-style chat completions (OpenAI, DeepSeek, Groq, xAI, OpenRouter, ...)
# ---------------------------------------------------------------------------

class OpenAIFunctionDelta(WireModel):
    name: str | None = None
    arguments: str | None = None


class OpenAIToolCallDelta(WireModel):
    index: int | None = None
    id: str | None = None
    type: str | None = None
    function: OpenAIFunctionDelta | None = None


class OpenAIDelta(WireModel):
    role: str | None = None
    content: str | None = None
    reasoning_content: str | None = None
    reasoning: str | None = None
    thinking: str | None = None
    tool_calls: list[OpenAIToolCallDelta] | None = None

    @property
    def reasoning_text(self) -> str | None:
        return self.reasoning_content or self.reasoning or self.thinking


class OpenAIChoiceDelta(WireModel):
    index: int = 0
    delta: OpenAIDelta | None = None
    finish_reason: str | None = None


class OpenAIUsage(WireModel):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    completion_tokens_details: dict[str, Any] | None = None
    prompt_tokens_details: dict[str, Any] | None = None

    @property
    def reasoning_tokens(self) -> int | None:
        details = self.completion_tokens_details or {}
        return details.get("reasoning_tokens")


class OpenAIChunk(WireModel):
    id: str | None = None
    model: str | None = None
    created: int | None = None
    system_fingerprint: str | None = None
    choices: list[OpenAIChoiceDelta] = Field(default_factory=list)
    usage: OpenAIUsage | None = None
    citations: list[Any] | None = None
    error: dict[str, Any] | str | None = None


class OpenAIFunctionCall(WireModel):
    name: str = ""
    arguments: str | dict[str, Any] | None = None


class OpenAIToolCall(WireModel):
    id: str | None = None
    type: str = "function"
    function: OpenAIFunctionCall


class OpenAIMessage(WireModel):
    role: str | None = None
    content: str | None = None
    reasoning_content: str | None = None
    reasoning: str | None = None
    thinking: str | None = None
    tool_calls: list[OpenAIToolCall] | None = None

    @property
    def reasoning_text(self) -> str | None:
        return self.reasoning_content or self.reasoning or self.thinking


class OpenAIChoice(WireModel):
    index: int = 0
    message: OpenAIMessage
    finish_reason: str | None = None


class OpenAICompletion(WireModel):
    id: str | None = None
    model: str | None = None
    system_fingerprint: str | None = None
    choices: list[OpenAIChoice] = Field(default_factory=list)
    usage: OpenAIUsage | None = None
    citations: list[Any] | None = None


# ---------------------------------------------------------------------------
# Anthropic messages
# ---------------------------------------------------------------------------

class AnthropicUsage(WireModel):
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None


class AnthropicContentBlock(WireModel):
    type: str
    text: str | None = None
    thinking: str | None = None
    signature: str | None = None
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] | None = None
    citations: list[dict[str, Any]] | None = None


class AnthropicMessage(WireModel):
    id: str | None = None
    type: str | None = None
    role: str | None = None
    model: str | None = None
    content: list[AnthropicContentBlock] = Field(default_factory=list)
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: AnthropicUsage | None = None


class AnthropicMessageStart(WireModel):
    type: Literal["message_start"]
    message: AnthropicMessage


class AnthropicContentBlockStart(WireModel):
    type: Literal["content_block_start"]
    index: int
    content_block: AnthropicContentBlock


class AnthropicBlockDelta(WireModel):
    type: str
    text: str | None = None
    thinking: str | None = None
    partial_json: str | None = None
    signature: str | None = None
    citation: dict[str, Any] | None = None


class AnthropicContentBlockDelta(WireModel):
    type: Literal["content_block_delta"]
    index: int
    delta: AnthropicBlockDelta


class AnthropicContentBlockStop(WireModel):
    type: Literal["content_block_stop"]
    index: int


class AnthropicMessageDeltaBody(WireModel):
    stop_reason: str | None = None
    stop_sequence: str | None = None


class AnthropicMessageDelta(WireModel):
    type: Literal["message_delta"]
    delta: AnthropicMessageDeltaBody = Field(default_factory=AnthropicMessageDeltaBody)
    usage: AnthropicUsage | None = None


class AnthropicMessageStop(WireModel):
    type: Literal["message_stop"]


class AnthropicPing(WireModel):
    type: Literal["ping"]


class AnthropicErrorEvent(WireModel):
    type: Literal["error"]
    error: dict[str, Any] = Field(default_factory=dict)


ANTHROPIC_EVENTS: dict[str, type[WireModel]] = {
    "message_start": AnthropicMessageStart,
    "content_block_start": AnthropicContentBlockStart,
    "content_block_delta": AnthropicContentBlockDelta,
    "content_block_stop": AnthropicContentBlockStop,
    "message_delta": AnthropicMessageDelta,
    "message_stop": AnthropicMessageStop,
    "ping": AnthropicPing,
    "error": AnthropicErrorEvent,
}


# ---------------------------------------------------------------------------
# Ollama /api/chat
# ---------------------------------------------------------------------------

class OllamaFunction(WireModel):
    name: str | None = None
    arguments: dict[str, Any] | str | None = None
    index: int | None = None


class OllamaToolCall(WireModel):
    function: OllamaFunction


class OllamaMessage(WireModel):
    role: str | None = None
    content: str | None = None
    thinking: str | None = None
    tool_calls: list[OllamaToolCall] | None = None


class OllamaChunk(WireModel):
    model: str | None = None
    created_at: str | None = None
    message: OllamaMessage | None = None
    response: str | None = None
    done: bool = False
    done_reason: str | None = None
    total_duration: int | None = None
    load_duration: int | None = None
    prompt_eval_count: int | None = None
    prompt_eval_duration: int | None = None
    eval_count: int | None = None
    eval_duration: int | None = None
    error: str | None = None
