"""Assembly of the logical response a stream (or a plain body) describes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from unillm.streaming import ToolCall


@dataclass
class UsageInfo:
    """Token counts reported by the provider.  Never estimated."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    reasoning_tokens: int | None = None

    @classmethod
    def from_counts(
        cls,
        prompt_tokens: int | None = None,
        completion_tokens: int | None = None,
        total_tokens: int | None = None,
        reasoning_tokens: int | None = None,
    ) -> UsageInfo | None:
        """Build a UsageInfo, or ``None`` when the provider reported nothing.

        ``total_tokens`` is derived from the two counts when the provider
        reports both but no total.
        """
        if total_tokens is None and prompt_tokens is not None and completion_tokens is not None:
            total_tokens = prompt_tokens + completion_tokens
        if prompt_tokens is None and completion_tokens is None and total_tokens is None:
            return None
        return cls(prompt_tokens, completion_tokens, total_tokens, reasoning_tokens)


@dataclass
class ChatResponse:
    """The complete result of one chat turn.

    Args:
        text: Concatenation of all text, or ``None`` if no text was produced.
        thinking: Concatenation of all reasoning, or ``None``.
        tool_calls: Finalized tool calls, or ``None`` (never an empty list).
        usage: Token counts, when the provider reported them.
        provider_metadata: ``{provider_id: {...}}`` bag of extra fields.
        finish_reason: The provider's own stop reason, verbatim.
    """

    text: str | None = None
    thinking: str | None = None
    tool_calls: list[ToolCall] | None = None
    usage: UsageInfo | None = None
    provider_metadata: dict[str, dict[str, Any]] | None = None
    finish_reason: str | None = None

    def __str__(self) -> str:
        parts = []
        if self.thinking:
            parts.append(f"Thinking: {self.thinking}")
        for call in self.tool_calls or []:
            parts.append(f"{call.name}({call.arguments})")
        if self.text:
            parts.append(self.text)
        return "\n".join(parts)


def merge_metadata(
    base: Mapping[str, Mapping[str, Any]] | None,
    extra: Mapping[str, Mapping[str, Any]] | None,
) -> dict[str, dict[str, Any]]:
    """Merge two namespaced metadata bags without mutating either."""
    merged: dict[str, dict[str, Any]] = {k: dict(v) for k, v in (base or {}).items()}
    for namespace, values in (extra or {}).items():
        merged.setdefault(namespace, {}).update(values)
    return merged


class ResponseSynthesizer:
    """Collects text, reasoning, usage and metadata for one response."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        self._text: list[str] = []
        self._reasoning: list[str] = []
        self._saw_text = False
        self._saw_reasoning = False
        self.usage: UsageInfo | None = None
        self.finish_reason: str | None = None
        self._metadata: dict[str, Any] = {}

    def append_text(self, delta: str) -> None:
        self._saw_text = True
        self._text.append(delta)

    def append_reasoning(self, delta: str) -> None:
        self._saw_reasoning = True
        self._reasoning.append(delta)

    def update_metadata(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            if value is not None:
                self._metadata[key] = value

    @property
    def text(self) -> str | None:
        return "".join(self._text) if self._saw_text else None

    @property
    def thinking(self) -> str | None:
        return "".join(self._reasoning) if self._saw_reasoning else None

    @property
    def provider_metadata(self) -> dict[str, dict[str, Any]] | None:
        if not self._metadata:
            return None
        return {self.provider_id: dict(self._metadata)}

    def build(self, tool_calls: list[ToolCall] | None = None) -> ChatResponse:
        return ChatResponse(
            text=self.text,
            thinking=self.thinking,
            tool_calls=list(tool_calls) if tool_calls else None,
            usage=self.usage,
            provider_metadata=self.provider_metadata,
            finish_reason=self.finish_reason,
        )
