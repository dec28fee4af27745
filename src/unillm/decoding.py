"""Wire framing: turn raw transport fragments into JSON records.

Two framings are supported:

* ``Framing.SSE``: Server-Sent Events as used by OpenAI-style and
  Anthropic APIs.  Each blank-line separated event contributes its
  ``data:`` payload; a ``[DONE]`` payload ends the stream.
* ``Framing.NDJSON``: one JSON object per line, as used by Ollama.

Fragments may split a UTF-8 sequence, a line or a record anywhere; the
decoder holds partial input until the rest arrives.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from enum import Enum
from typing import Any

from unillm.errors import DecodeError

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class Framing(Enum):
    SSE = "sse"
    NDJSON = "ndjson"


class Utf8StreamDecoder:
    """Incremental UTF-8 decoder that never splits a multi-byte character."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def decode(self, fragment: bytes | str) -> str:
        if isinstance(fragment, str):
            return fragment
        return self._decoder.decode(fragment)

    def flush(self) -> str:
        return self._decoder.decode(b"", final=True)


class WireChunkDecoder:
    """Stateful decoder for one stream.

    ``feed`` returns the records completed by a fragment; ``flush`` returns
    whatever the trailing buffer still holds once the transport is done.

    Args:
        framing: The provider's wire framing.
    """

    def __init__(self, framing: Framing) -> None:
        self.framing = framing
        self.done = False
        self.records = 0
        self.skipped = 0
        self._utf8 = Utf8StreamDecoder()
        self._buffer = ""

    def feed(self, fragment: bytes | str) -> list[dict[str, Any]]:
        if self.done:
            return []
        self._buffer += self._utf8.decode(fragment)
        return self._drain(final=False)

    def flush(self) -> list[dict[str, Any]]:
        if self.done:
            return []
        self._buffer += self._utf8.flush()
        return self._drain(final=True)

    def reject(self) -> None:
        """Count a returned record as malformed after all (the consumer
        could not use it)."""
        if self.records:
            self.records -= 1
        self.skipped += 1

    def close(self) -> None:
        """Raise :class:`DecodeError` if the stream yielded nothing usable."""
        if self.records == 0 and not self.done:
            raise DecodeError(
                f"Stream ended without a single valid record "
                f"({self.skipped} malformed)"
            )

    # ------------------------------------------------------------------
    # Framing
    # ------------------------------------------------------------------

    def _drain(self, final: bool) -> list[dict[str, Any]]:
        if self.framing is Framing.SSE:
            return self._drain_sse(final)
        return self._drain_ndjson(final)

    def _drain_sse(self, final: bool) -> list[dict[str, Any]]:
        buf = self._buffer
        # A lone trailing \r may be the first half of \r\n.
        hold = ""
        if not final and buf.endswith("\r"):
            buf, hold = buf[:-1], "\r"
        buf = buf.replace("\r\n", "\n").replace("\r", "\n")

        events = buf.split("\n\n")
        rest = events.pop()
        if final:
            events.append(rest)
            rest = ""
        self._buffer = rest + hold

        records: list[dict[str, Any]] = []
        for event in events:
            if self.done:
                break
            records.extend(self._parse_sse_event(event, final))
        return records

    def _parse_sse_event(self, event: str, trailing: bool) -> list[dict[str, Any]]:
        data_lines = []
        for line in event.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if name != "data":
                continue
            data_lines.append(value[1:] if value.startswith(" ") else value)

        if not data_lines:
            return []

        payload = "\n".join(data_lines).strip()
        if payload == DONE_SENTINEL:
            self.done = True
            return []

        if len(data_lines) == 1:
            record = self._parse(payload, trailing=trailing)
            return [record] if record is not None else []

        try:
            record = json.loads(payload)
        except json.JSONDecodeError:
            record = None
        if isinstance(record, dict):
            self.records += 1
            return [record]

        # Some servers put several records into one event, one per line.
        records = []
        for line in data_lines:
            line = line.strip()
            if line == DONE_SENTINEL:
                self.done = True
                break
            record = self._parse(line, trailing=trailing)
            if record is not None:
                records.append(record)
        return records

    def _drain_ndjson(self, final: bool) -> list[dict[str, Any]]:
        lines = self._buffer.split("\n")
        rest = lines.pop()
        self._buffer = rest
        if final:
            self._buffer = ""

        records = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            record = self._parse(line)
            if record is not None:
                records.append(record)

        if final and rest.strip():
            record = self._parse(rest.strip(), trailing=True)
            if record is not None:
                records.append(record)
        return records

    def _parse(self, payload: str, trailing: bool = False) -> dict[str, Any] | None:
        if not payload:
            return None
        try:
            record = json.loads(payload)
        except json.JSONDecodeError as e:
            if trailing:
                logger.debug("Discarding incomplete trailing record: %r", payload[:200])
                return None
            self.skipped += 1
            logger.warning("Skipping malformed %s record (%s): %r",
                           self.framing.value, e, payload[:200])
            return None
        if not isinstance(record, dict):
            self.skipped += 1
            logger.warning("Skipping non-object %s record: %r",
                           self.framing.value, payload[:200])
            return None
        self.records += 1
        return record


async def decode_records(
    fragments: AsyncIterable[bytes | str],
    framing: Framing,
) -> AsyncIterator[dict[str, Any]]:
    """Decode an async iterable of raw fragments into JSON records.

    Raises:
        DecodeError: If the stream ends without any valid record.
    """
    decoder = WireChunkDecoder(framing)
    async for fragment in fragments:
        for record in decoder.feed(fragment):
            yield record
        if decoder.done:
            break
    for record in decoder.flush():
        yield record
    decoder.close()
