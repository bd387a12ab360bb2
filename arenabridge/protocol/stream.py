"""Decoder for the service's streamed turn responses.

Wire format: ``{code}:{json}\\n`` where ``code`` is two characters (see
``EventCode``). Records may be split across reads. A malformed record is
logged and dropped; it never aborts the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator

from arenabridge.models.events import EventCode, StreamEvent
from arenabridge.models.session import WireAttachment, WireMessage

logger = logging.getLogger(__name__)

# A valid record like a0:"" is at least this long
MIN_RECORD_LENGTH = 4

_APPEND_CODES = {EventCode.TEXT.value, EventCode.MODERATION.value}


def parse_record(line: str) -> StreamEvent | None:
    """Decode one record, or return None if it must be dropped."""
    line = line.strip()
    if len(line) < MIN_RECORD_LENGTH:
        return None

    code = line[:2]
    colon = line.find(":", 2)
    if colon == -1:
        return None

    payload = line[colon + 1 :]
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse payload for event [{code}]: {payload[:200]}")
        return None
    return StreamEvent(event=code, data=data)


def apply_event(event: StreamEvent, placeholder: WireMessage | None) -> None:
    """Apply an event's effect to the turn's assistant placeholder."""
    if placeholder is None:
        return

    if event.event in _APPEND_CODES:
        if isinstance(event.data, str):
            placeholder.content += event.data

    elif event.event == EventCode.DATA.value:
        if not isinstance(event.data, list):
            return
        for item in event.data:
            if isinstance(item, dict) and item.get("type") == "image":
                placeholder.experimental_attachments.append(
                    WireAttachment(
                        content_type=item.get("mimeType"),
                        name=item.get("name") or "image",
                        url=item.get("image") or "",
                    )
                )

    elif event.event == EventCode.FINISH_MESSAGE.value:
        placeholder.status = "success"


class StreamDecoder:
    """
    Incremental decoder for one response stream.

    Feed raw chunks as they arrive; each call returns the events completed by
    that chunk. Call ``flush()`` once the source ends to decode a trailing
    record that has no newline.
    """

    def __init__(self, placeholder: WireMessage | None = None):
        self.placeholder = placeholder
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer += chunk

        events: list[StreamEvent] = []
        while True:
            boundary = self._buffer.find("\n")
            if boundary == -1:
                break
            line = self._buffer[:boundary]
            self._buffer = self._buffer[boundary + 1 :]
            event = self._decode(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[StreamEvent]:
        self._buffer += self._utf8.decode(b"", final=True)
        leftover, self._buffer = self._buffer, ""
        event = self._decode(leftover)
        return [event] if event is not None else []

    def _decode(self, line: str) -> StreamEvent | None:
        if not line.strip():
            return None
        event = parse_record(line)
        if event is not None:
            apply_event(event, self.placeholder)
        return event


async def decode_stream(
    chunks: AsyncIterable[bytes],
    placeholder: WireMessage | None = None,
) -> AsyncIterator[StreamEvent]:
    """Decode a byte stream into events, mutating ``placeholder`` as they pass."""
    decoder = StreamDecoder(placeholder)
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
