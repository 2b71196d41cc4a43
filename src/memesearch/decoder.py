"""Decode the streaming search protocol from raw byte chunks.

The server writes one record per line pair::

    event: thinking
    data: {"thinking_text": "...", "is_delta": true}

The ``event:`` line is optional; each ``data:`` line is a complete record.
Chunks from the transport can end anywhere, including in the middle of a
multi-byte character, so decoding keeps a rolling buffer and only ever
emits lines that have seen their terminating newline.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, Iterable, Iterator, Optional

from memesearch.models import DEFAULT_EVENT_TYPE, StreamEvent

logger = logging.getLogger(__name__)

EVENT_PREFIX = "event: "
DATA_PREFIX = "data: "


class EventFrameDecoder:
    """Incremental decoder: feed it byte chunks, get back complete events."""

    def __init__(self) -> None:
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event_type = DEFAULT_EVENT_TYPE

    @property
    def pending(self) -> str:
        """Text received but not yet terminated by a newline."""
        return self._buffer

    def reset(self) -> None:
        self._text.reset()
        self._buffer = ""
        self._event_type = DEFAULT_EVENT_TYPE

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        self._buffer += self._text.decode(chunk)
        lines = self._buffer.split("\n")
        # Last segment has no newline yet
        self._buffer = lines.pop()

        events = []
        for line in lines:
            event = self._handle_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def _handle_line(self, line: str) -> Optional[StreamEvent]:
        if not line:
            self._event_type = DEFAULT_EVENT_TYPE
            return None

        if line.startswith(EVENT_PREFIX):
            self._event_type = line[len(EVENT_PREFIX):].strip() or DEFAULT_EVENT_TYPE
            return None

        if not line.startswith(DATA_PREFIX):
            return None

        event_type = self._event_type
        self._event_type = DEFAULT_EVENT_TYPE
        data = line[len(DATA_PREFIX):]
        try:
            payload = json.loads(data)
        except (json.JSONDecodeError, ValueError, RecursionError) as e:
            logger.warning("Dropping malformed stream frame %r: %s", data[:200], e)
            return None
        if not isinstance(payload, dict):
            logger.warning("Dropping non-object stream frame %r", data[:200])
            return None

        if not payload.get("stage"):
            payload["stage"] = event_type
        return StreamEvent(stage=str(payload["stage"]), payload=payload, event_type=event_type)


def decode_chunks(chunks: Iterable[bytes]) -> Iterator[StreamEvent]:
    """Decode an iterable of byte chunks (e.g. a recorded stream)."""
    decoder = EventFrameDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    if decoder.pending:
        logger.debug("Discarding %d unterminated chars at end of stream", len(decoder.pending))


async def decode_stream(
    chunks: AsyncIterable[bytes],
    *,
    decoder: Optional[EventFrameDecoder] = None,
) -> AsyncIterator[StreamEvent]:
    """Decode an async byte stream, yielding events in arrival order.

    Transport errors raised by ``chunks`` propagate unchanged.
    """
    decoder = decoder or EventFrameDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    if decoder.pending:
        logger.debug("Discarding %d unterminated chars at end of stream", len(decoder.pending))
