"""Provider-agnostic stream parts.

Every streaming call yields a sequence of :class:`StreamPart` objects that
ends with exactly one :class:`Finish` or :class:`Error`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from unillm.streaming import ToolCall

if TYPE_CHECKING:
    from unillm.errors import LLMError
    from unillm.response import ChatResponse


@dataclass
class StreamPart:
    """Base for all stream parts."""


@dataclass
class TextStart(StreamPart):
    pass


@dataclass
class TextDelta(StreamPart):
    delta: str = ""


@dataclass
class TextEnd(StreamPart):
    """Closes a text run; ``text`` is everything the run contained."""

    text: str = ""


@dataclass
class ReasoningStart(StreamPart):
    pass


@dataclass
class ReasoningDelta(StreamPart):
    delta: str = ""


@dataclass
class ReasoningEnd(StreamPart):
    text: str = ""


@dataclass
class ToolCallStart(StreamPart):
    """First sighting of a tool call.

    ``tool_call.arguments`` holds whatever arguments were known at that
    point, usually the first fragment.
    """

    tool_call: ToolCall = field(default_factory=ToolCall)


@dataclass
class ToolCallDelta(StreamPart):
    """A later observation of the same call.

    Under append semantics ``tool_call.arguments`` is the new fragment
    only; under replace semantics it is the full arguments so far.
    """

    tool_call: ToolCall = field(default_factory=ToolCall)


@dataclass
class ToolCallEnd(StreamPart):
    tool_call_id: str = ""


@dataclass
class ProviderMetadata(StreamPart):
    """Provider-specific fields, namespaced by provider id."""

    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class Finish(StreamPart):
    """Final event of a successful stream."""

    response: ChatResponse | None = None


@dataclass
class Error(StreamPart):
    """Final event of a failed or cancelled stream.

    Blocks that were still open are abandoned, not closed.
    """

    error: LLMError | None = None


@dataclass
class RunEvent:
    """Base for events the :class:`~unillm.runner.Runner` adds between
    stream parts."""


@dataclass
class RunItemEvent(RunEvent):
    """A discrete step in the tool loop.

    ``name`` values: ``"message"``, ``"tool_call"``.
    """

    name: str = ""
    data: dict = field(default_factory=dict)


@dataclass
class RunCompleteEvent(RunEvent):
    """Always the last event of a run."""

    result: Any = None
