"""Data models for arenabridge."""

from arenabridge.models.events import FINISH_ERROR, FINISH_RETRY, EventCode, StreamEvent
from arenabridge.models.session import (
    Attachment,
    ChatMessage,
    ConversationSession,
    ModelDescriptor,
    WireAttachment,
    WireMessage,
)

__all__ = [
    "Attachment",
    "ChatMessage",
    "ConversationSession",
    "EventCode",
    "FINISH_ERROR",
    "FINISH_RETRY",
    "ModelDescriptor",
    "StreamEvent",
    "WireAttachment",
    "WireMessage",
]
