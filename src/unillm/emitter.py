"""The stream-part state machine and the driver that feeds it.

:class:`StreamPartEmitter` turns normalized deltas into well-formed
Start/Delta/End sequences.  :func:`stream_parts` pulls raw fragments from a
transport, decodes them, lets a provider adapter interpret each record and
yields the resulting parts until exactly one ``Finish`` or ``Error``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Mapping

from unillm.cancellation import CancellationToken
from unillm.decoding import WireChunkDecoder
from unillm.errors import CancelledStreamError, LLMError, ProviderError
from unillm.events import (
    Error,
    Finish,
    ProviderMetadata,
    ReasoningDelta,
    ReasoningEnd,
    ReasoningStart,
    StreamPart,
    TextDelta,
    TextEnd,
    TextStart,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
)
from unillm.response import ResponseSynthesizer, UsageInfo
from unillm.streaming import FragmentMode, ToolCallAccumulator, ToolCallFragment

if TYPE_CHECKING:
    from unillm.adapters import StreamAdapter

logger = logging.getLogger(__name__)


class StreamPartEmitter:
    """Per-stream state machine producing normalized stream parts.

    Text and reasoning are tracked as runs: opening one closes the other,
    so at most one of them is open at any time.  Tool calls are tracked by
    id, independently of the runs.  Every method returns the (possibly
    empty) list of parts to emit, in order.  Once ``finish`` or ``fail``
    has run, every method returns ``[]``.

    Args:
        provider_id: Namespace used for provider metadata.
        accumulator: Tool-call accumulator configured with the provider's
            fragment semantics.
    """

    def __init__(
        self,
        provider_id: str,
        accumulator: ToolCallAccumulator | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.accumulator = accumulator or ToolCallAccumulator()
        self.synthesizer = ResponseSynthesizer(provider_id)
        self._text_run: list[str] | None = None
        self._reasoning_run: list[str] | None = None
        self._started: list[str] = []
        self._ended: set[str] = set()
        self._injected = 0
        self._terminated = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def started_tool_calls(self) -> list[str]:
        return list(self._started)

    # ------------------------------------------------------------------
    # Text and reasoning
    # ------------------------------------------------------------------

    def text(self, delta: str | None) -> list[StreamPart]:
        if self._terminated or not delta:
            return []
        parts: list[StreamPart] = []
        if self._text_run is None:
            parts.extend(self.end_reasoning())
            self._text_run = []
            parts.append(TextStart())
        self._text_run.append(delta)
        self.synthesizer.append_text(delta)
        parts.append(TextDelta(delta=delta))
        return parts

    def reasoning(self, delta: str | None) -> list[StreamPart]:
        if self._terminated or not delta:
            return []
        parts: list[StreamPart] = []
        if self._reasoning_run is None:
            parts.extend(self.end_text())
            self._reasoning_run = []
            parts.append(ReasoningStart())
        self._reasoning_run.append(delta)
        self.synthesizer.append_reasoning(delta)
        parts.append(ReasoningDelta(delta=delta))
        return parts

    def end_text(self) -> list[StreamPart]:
        if self._terminated or self._text_run is None:
            return []
        text = "".join(self._text_run)
        self._text_run = None
        return [TextEnd(text=text)]

    def end_reasoning(self) -> list[StreamPart]:
        if self._terminated or self._reasoning_run is None:
            return []
        text = "".join(self._reasoning_run)
        self._reasoning_run = None
        return [ReasoningEnd(text=text)]

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    def tool_call(self, fragment: ToolCallFragment) -> list[StreamPart]:
        if self._terminated:
            return []
        snapshot = self.accumulator.add_delta(fragment)
        if snapshot is None:
            return []
        if snapshot.id not in self._started:
            self._started.append(snapshot.id)
            return [ToolCallStart(tool_call=snapshot)]
        if self.accumulator.mode is FragmentMode.APPEND:
            snapshot = replace(snapshot, arguments=fragment.arguments or "")
        return [ToolCallDelta(tool_call=snapshot)]

    def end_tool_call(self, call_id: str) -> list[StreamPart]:
        if self._terminated or call_id not in self._started or call_id in self._ended:
            return []
        self._ended.add(call_id)
        return [ToolCallEnd(tool_call_id=call_id)]

    def inject_tool_call(self, name: str, arguments: str) -> list[StreamPart]:
        """Start a complete tool call recovered from somewhere other than
        the provider's tool-call field (e.g. parsed out of plain text)."""
        key = ("injected", self._injected)
        self._injected += 1
        return self.tool_call(ToolCallFragment(key=key, name=name, arguments=arguments))

    # ------------------------------------------------------------------
    # Usage and metadata
    # ------------------------------------------------------------------

    def set_usage(self, usage: UsageInfo | None) -> None:
        if usage is not None:
            self.synthesizer.usage = usage

    def add_metadata(self, values: Mapping[str, Any]) -> None:
        self.synthesizer.update_metadata(values)

    def set_finish_reason(self, reason: str | None) -> None:
        if reason:
            self.synthesizer.finish_reason = reason

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def finish(self, best_effort: bool = False) -> list[StreamPart]:
        """Close every open block and emit the final response."""
        if self._terminated:
            return []
        if best_effort:
            logger.debug("%s stream ended without a terminal record", self.provider_id)

        parts = self.end_text() + self.end_reasoning()
        calls = self.accumulator.finalize()
        for call in calls:
            # Calls whose identity resolved only at finalize time.
            if call.id not in self._started:
                self._started.append(call.id)
                parts.append(ToolCallStart(tool_call=call))
        for call_id in self._started:
            parts.extend(self.end_tool_call(call_id))

        metadata = self.synthesizer.provider_metadata
        if metadata:
            parts.append(ProviderMetadata(data=metadata))
        parts.append(Finish(response=self.synthesizer.build(calls)))
        self._terminated = True
        return parts

    def fail(self, error: LLMError) -> list[StreamPart]:
        """Abandon all open blocks and emit a terminal error."""
        if self._terminated:
            return []
        self._terminated = True
        return [Error(error=error)]


_EXHAUSTED = object()


async def _next(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _EXHAUSTED


async def _read(
    fragments: AsyncIterable[bytes | str],
    cancel_token: CancellationToken | None,
) -> AsyncIterator[bytes | str]:
    """Yield transport fragments until exhausted or cancelled.

    A pending read is abandoned as soon as the token fires.
    """
    iterator = aiter(fragments)
    try:
        while True:
            if cancel_token is None:
                fragment = await _next(iterator)
            else:
                cancel_token.raise_if_cancelled()
                read = asyncio.ensure_future(_next(iterator))
                waiter = asyncio.ensure_future(cancel_token.wait())
                try:
                    await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    waiter.cancel()
                if not read.done():
                    read.cancel()
                    await asyncio.wait({read})
                    cancel_token.raise_if_cancelled()
                fragment = read.result()
            if fragment is _EXHAUSTED:
                return
            yield fragment
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


async def stream_parts(
    fragments: AsyncIterable[bytes | str],
    adapter: StreamAdapter,
    cancel_token: CancellationToken | None = None,
) -> AsyncIterator[StreamPart]:
    """Drive one streaming call from raw fragments to stream parts.

    The sequence always ends with exactly one ``Finish`` or ``Error``.
    A stream that stops without a terminal record still finishes, using
    whatever was accumulated.  Cancellation ends it with an ``Error``
    whose kind is ``ErrorKind.CANCELLED`` and skips synthesis.

    Args:
        fragments: Raw bytes or text chunks from the transport.
        adapter: Interprets the provider's records.
        cancel_token: Optional token checked between records and raced
            against every transport read.
    """
    emitter = adapter.new_emitter()
    decoder = WireChunkDecoder(adapter.framing)
    source = _read(fragments, cancel_token)

    def handle(record: dict[str, Any]) -> list[StreamPart]:
        rejected = adapter.rejected
        parts = adapter.handle(record, emitter)
        if adapter.rejected != rejected:
            decoder.reject()
        return parts

    def check_cancelled() -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

    try:
        async for fragment in source:
            for record in decoder.feed(fragment):
                for part in handle(record):
                    yield part
                if emitter.terminated:
                    return
                check_cancelled()
            if decoder.done:
                break

        for record in decoder.flush():
            for part in handle(record):
                yield part
            if emitter.terminated:
                return
            check_cancelled()
        decoder.close()
        check_cancelled()

        for part in adapter.finish(emitter, best_effort=not decoder.done):
            yield part
    except CancelledStreamError as e:
        logger.info("%s stream cancelled: %s", adapter.provider_id, e.message)
        for part in emitter.fail(e):
            yield part
    except LLMError as e:
        if e.provider is None:
            e.provider = adapter.provider_id
        logger.warning("%s stream failed: %r", adapter.provider_id, e)
        for part in emitter.fail(e):
            yield part
    except Exception as e:
        logger.exception("Unexpected error in %s stream", adapter.provider_id)
        error = ProviderError(f"Stream error: {e}", provider=adapter.provider_id)
        for part in emitter.fail(error):
            yield part
    finally:
        await source.aclose()
