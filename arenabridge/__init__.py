"""arenabridge: conversations with LMArena through a browser-held identity."""

from arenabridge.core.client import ArenaClient, Chat
from arenabridge.core.config import ArenaSettings
from arenabridge.models import Attachment, ChatMessage, EventCode, StreamEvent

__version__ = "0.3.0"

__all__ = [
    "ArenaClient",
    "ArenaSettings",
    "Attachment",
    "Chat",
    "ChatMessage",
    "EventCode",
    "StreamEvent",
]
