"""
Session models for conversations with the remote service.

Two parallel views of a conversation are kept: the display history
(``ChatMessage``) that callers see, and the wire message graph
(``WireMessage``) that is serialized into request payloads.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from arenabridge.utils.ids import new_id

Role = Literal["user", "assistant", "system"]
MessageStatus = Literal["pending", "success"]


class Attachment(BaseModel):
    """A file attached to a display message.

    Either already hosted (``url`` set) or pending upload, as raw bytes in
    ``content`` or as a ``file_path`` + ``size`` pair for streamed uploads.
    """

    mime: str
    content: bytes | None = None
    file_path: Path | None = None
    size: int | None = None
    key: str | None = None
    url: str | None = None

    @property
    def is_hosted(self) -> bool:
        return self.url is not None


class ChatMessage(BaseModel):
    """A single message in the display history."""

    role: Role
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    id: str | None = None


class WireAttachment(BaseModel):
    """An attachment reference as sent to the service (never raw bytes)."""

    model_config = ConfigDict(populate_by_name=True)

    content_type: str | None = Field(default=None, alias="contentType")
    name: str
    url: str


class WireMessage(BaseModel):
    """One node of the wire message graph."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    id: str
    role: Role
    content: str = ""
    experimental_attachments: list[WireAttachment] = Field(default_factory=list)
    evaluation_session_id: str | None = Field(default=None, alias="evaluationSessionId")
    model_id: str | None = Field(default=None, alias="modelId")
    parent_message_ids: list[str] = Field(default_factory=list, alias="parentMessageIds")
    participant_position: str = Field(default="a", alias="participantPosition")
    status: MessageStatus = "pending"

    def to_wire(self) -> dict[str, Any]:
        """Serialize with the service's field names."""
        return self.model_dump(mode="json", by_alias=True)


class ModelDescriptor(BaseModel):
    """A model entry from the service's catalog."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    public_name: str = Field(alias="publicName")
    organization: str | None = None
    provider: str | None = None
    capabilities: dict[str, Any] = Field(default_factory=dict)

    def supports_input(self, kind: str) -> bool:
        """Whether the model accepts an input of the given kind (e.g. ``image``)."""
        inputs = self.capabilities.get("inputCapabilities") or {}
        return bool(inputs.get(kind))

    def supports_output(self, kind: str) -> bool:
        outputs = self.capabilities.get("outputCapabilities") or {}
        return bool(outputs.get(kind))


class ConversationSession(BaseModel):
    """One logical chat with the service."""

    model_config = ConfigDict(protected_namespaces=())

    session_id: str = Field(default_factory=new_id)
    model_id: str
    modality: str = "chat"
    mode: str = "direct"
    # False until the service has acknowledged creation of the session
    exists: bool = False
    messages: list[ChatMessage] = Field(default_factory=list)
    wire_messages: list[WireMessage] = Field(default_factory=list)
    user_message_id: str = ""
    assistant_message_id: str = ""

    def find_wire_message(self, message_id: str) -> WireMessage | None:
        for msg in self.wire_messages:
            if msg.id == message_id:
                return msg
        return None

    @property
    def last_wire_message(self) -> WireMessage | None:
        return self.wire_messages[-1] if self.wire_messages else None
