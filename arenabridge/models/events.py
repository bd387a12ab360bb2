"""
Stream event models.

Event codes are two characters: a participant prefix (``a`` for the single
model in direct mode, ``c`` for moderation text) followed by the AI SDK data
stream type code.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel


class EventCode(str, Enum):
    """Known stream event codes."""

    TEXT = "a0"
    DATA = "a2"
    ERROR = "a3"
    ASSISTANT_MESSAGE = "a4"
    ASSISTANT_CONTROL_DATA = "a5"
    DATA_MESSAGE = "a6"
    MESSAGE_ANNOTATIONS = "a8"
    TOOL_CALL = "a9"
    TOOL_RESULT = "aa"
    TOOL_CALL_STREAMING_START = "ab"
    TOOL_CALL_DELTA = "ac"
    FINISH_MESSAGE = "ad"
    FINISH_STEP = "ae"
    START_STEP = "af"
    REASONING = "ag"
    SOURCE = "ah"
    REDACTED_REASONING = "ai"
    REASONING_SIGNATURE = "aj"
    FILE = "ak"
    MODERATION = "c0"


# Payloads of a terminal ``ad`` event with special meaning for the caller
FINISH_RETRY = "retry"
FINISH_ERROR = "err"

_KNOWN_CODES = {code.value: code for code in EventCode}


class StreamEvent(BaseModel):
    """A decoded unit of the response stream."""

    event: str
    data: Any = None

    @property
    def code(self) -> EventCode | None:
        """The known code for this event, or None for unrecognized codes."""
        return _KNOWN_CODES.get(self.event)

    @property
    def is_terminal(self) -> bool:
        return self.event == EventCode.FINISH_MESSAGE.value

    @property
    def requests_retry(self) -> bool:
        return self.is_terminal and self.data == FINISH_RETRY

    @property
    def is_error(self) -> bool:
        return self.is_terminal and self.data == FINISH_ERROR

    @classmethod
    def text(cls, data: str) -> StreamEvent:
        return cls(event=EventCode.TEXT.value, data=data)

    @classmethod
    def finish(cls, data: str) -> StreamEvent:
        return cls(event=EventCode.FINISH_MESSAGE.value, data=data)
