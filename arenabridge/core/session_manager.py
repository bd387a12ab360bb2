"""
Session manager: the per-conversation state machine.

Every appended display message gets a wire counterpart parented to the
previous wire message. Appending a user message also appends an empty
assistant placeholder, parented to it, which the next streamed turn fills.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from arenabridge.core.errors import UploadError
from arenabridge.models.session import (
    Attachment,
    ChatMessage,
    ConversationSession,
    ModelDescriptor,
    WireAttachment,
    WireMessage,
)
from arenabridge.utils.ids import new_id

logger = logging.getLogger(__name__)

# Resolves a pending attachment to its hosted (url, key)
Uploader = Callable[[ConversationSession, Attachment], Awaitable[tuple[str, str]]]


class SessionManager:
    """
    Creates sessions and maintains their message graphs.

    Args:
        uploader: Upload collaborator for attachments that are not hosted yet
    """

    def __init__(self, uploader: Uploader | None = None):
        self.uploader = uploader

    def create_session(self, model: ModelDescriptor, modality: str = "chat") -> ConversationSession:
        """Create a session that the service does not know about yet."""
        return ConversationSession(model_id=model.id, modality=modality)

    def reset(self, session: ConversationSession) -> None:
        """Move the conversation to a fresh remote session."""
        session.session_id = new_id()
        session.exists = False

    async def append_message(self, session: ConversationSession, message: ChatMessage) -> WireMessage:
        """
        Append a display message and its wire counterpart.

        Args:
            session: The session to append to
            message: The message; its ``id`` is assigned if missing

        Returns:
            The new wire message

        Raises:
            UploadError: If an attachment cannot be uploaded
        """
        if not message.id:
            message.id = new_id()

        parent = session.last_wire_message
        wire = WireMessage(
            id=message.id,
            role=message.role,
            content=message.content,
            evaluation_session_id=session.session_id,
            parent_message_ids=[parent.id] if parent else [],
            experimental_attachments=[
                await self._resolve_attachment(session, att) for att in message.attachments
            ],
        )

        session.messages.append(message)
        session.wire_messages.append(wire)

        if message.role == "user":
            placeholder = self._add_placeholder(session, replying_to=message.id)
            session.user_message_id = message.id
            session.assistant_message_id = placeholder.id

        return wire

    async def _resolve_attachment(self, session: ConversationSession, attachment: Attachment) -> WireAttachment:
        if not attachment.is_hosted:
            if self.uploader is None:
                raise UploadError("Attachment is not hosted and no uploader is configured.")
            url, key = await self.uploader(session, attachment)
            # Keep the result so a rebuilt history does not upload again
            attachment.url = url
            attachment.key = key
        return WireAttachment(
            content_type=attachment.mime,
            name=attachment.key or "attachment",
            url=attachment.url,
        )

    def _add_placeholder(self, session: ConversationSession, replying_to: str) -> WireMessage:
        placeholder = WireMessage(
            id=new_id(),
            role="assistant",
            content="",
            evaluation_session_id=session.session_id,
            model_id=session.model_id,
            parent_message_ids=[replying_to],
            status="pending",
        )
        session.wire_messages.append(placeholder)
        return placeholder

    def begin_retry(self, session: ConversationSession) -> None:
        """Drop the active turn's assistant placeholder from the wire graph.

        The service's retry endpoint expects the errored assistant entry to be
        absent from history. Display history is not touched.
        """
        assistant_id = session.assistant_message_id.lower()
        before = len(session.wire_messages)
        session.wire_messages = [
            msg for msg in session.wire_messages if msg.id.lower() != assistant_id
        ]
        if len(session.wire_messages) != before:
            logger.debug(f"Deleted latest assistant message {session.assistant_message_id}")

    def placeholder_for_turn(self, session: ConversationSession) -> WireMessage:
        """Return the active turn's placeholder, creating it if absent."""
        placeholder = session.find_wire_message(session.assistant_message_id)
        if placeholder is not None:
            return placeholder

        if not session.assistant_message_id:
            session.assistant_message_id = new_id()
        placeholder = WireMessage(
            id=session.assistant_message_id,
            role="assistant",
            content="",
            evaluation_session_id=session.session_id,
            model_id=session.model_id,
            parent_message_ids=[session.user_message_id] if session.user_message_id else [],
            status="pending",
        )
        session.wire_messages.append(placeholder)
        return placeholder

    async def replace_history(self, session: ConversationSession, messages: list[ChatMessage]) -> None:
        """Rebuild both graphs from the given display messages."""
        session.messages = []
        session.wire_messages = []
        session.user_message_id = ""
        session.assistant_message_id = ""
        for message in messages:
            await self.append_message(session, message)
