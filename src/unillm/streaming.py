"""Tool-call reconstruction from streamed fragments.

Providers deliver tool calls in pieces.  OpenAI-style APIs send the id and
name first and then argument fragments keyed by ``index``; Anthropic keys
fragments by content-block index; Ollama resends the whole call on every
chunk.  The :class:`ToolCallAccumulator` hides those differences behind a
single ``add_delta``/``finalize`` pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Hashable

logger = logging.getLogger(__name__)


class FragmentMode(Enum):
    """How successive argument fragments combine."""

    APPEND = "append"
    REPLACE = "replace"


@dataclass
class ToolCallFragment:
    """One observation of a tool call inside a streaming chunk."""

    key: Hashable
    call_id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass
class ToolCall:
    """A tool call requested by the model."""

    id: str = ""
    name: str = ""
    arguments: str = ""
    kind: str = "function"

    def to_openai(self) -> dict:
        return {
            "id": self.id,
            "type": self.kind,
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class _Entry:
    position: int
    id: str | None = None
    name: str = ""
    buffer: list[str] = field(default_factory=list)

    @property
    def arguments(self) -> str:
        return "".join(self.buffer)


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Identity is resolved on the first observation that carries either an
    explicit id or a name.  Without an explicit id the call is named
    ``call_<name>``, then ``call_<name>_1``, ``call_<name>_2`` for repeated
    calls to the same tool.

    Args:
        mode: Whether argument fragments are appended (OpenAI, Anthropic)
            or replace the previous arguments (Ollama).
    """

    def __init__(self, mode: FragmentMode = FragmentMode.APPEND) -> None:
        self.mode = mode
        self._entries: dict[Hashable, _Entry] = {}
        self._used_ids: set[str] = set()
        self._name_counts: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def name_for(self, key: Hashable) -> str | None:
        entry = self._entries.get(key)
        return entry.name if entry is not None else None

    def add_delta(self, fragment: ToolCallFragment) -> ToolCall | None:
        """Merge *fragment* and return the current snapshot of its call.

        Returns ``None`` while the call has neither an id nor a name; its
        arguments are still buffered and show up once identity resolves.
        """
        entry = self._entries.get(fragment.key)
        if entry is None:
            entry = _Entry(position=len(self._entries))
            self._entries[fragment.key] = entry

        if fragment.name and not entry.name:
            entry.name = fragment.name

        if fragment.arguments is not None:
            if self.mode is FragmentMode.REPLACE:
                entry.buffer = [fragment.arguments]
            else:
                entry.buffer.append(fragment.arguments)

        if entry.id is None:
            if fragment.call_id:
                entry.id = self._claim(fragment.call_id)
            elif entry.name:
                entry.id = self._synthesize(entry.name)
            else:
                return None

        return self._snapshot(entry)

    def snapshot(self, key: Hashable) -> ToolCall | None:
        entry = self._entries.get(key)
        if entry is None or entry.id is None:
            return None
        return self._snapshot(entry)

    def finalize(self) -> list[ToolCall]:
        """Return every tracked call, in first-seen order.

        Calls whose identity never resolved get a positional id so they
        are never silently dropped.  Arguments are returned verbatim even
        when they are not valid JSON.
        """
        calls = []
        for entry in sorted(self._entries.values(), key=lambda e: e.position):
            if entry.id is None:
                entry.id = self._claim(f"call_{entry.position}")
                logger.debug("Tool call at position %d never named", entry.position)
            call = self._snapshot(entry)
            if not call.arguments:
                call = replace(call, arguments="{}")
            calls.append(call)
        return calls

    def _snapshot(self, entry: _Entry) -> ToolCall:
        return ToolCall(id=entry.id or "", name=entry.name, arguments=entry.arguments)

    def _synthesize(self, name: str) -> str:
        while True:
            n = self._name_counts.get(name, 0)
            self._name_counts[name] = n + 1
            candidate = f"call_{name}" if n == 0 else f"call_{name}_{n}"
            if candidate not in self._used_ids:
                self._used_ids.add(candidate)
                return candidate

    def _claim(self, call_id: str) -> str:
        candidate = call_id
        n = 1
        while candidate in self._used_ids:
            candidate = f"{call_id}_{n}"
            n += 1
        self._used_ids.add(candidate)
        return candidate
