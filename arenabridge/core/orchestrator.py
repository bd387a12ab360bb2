"""
Conversation orchestrator: drives one turn end to end.

    append user message -> build payload -> send through the bridge
    -> decode the event stream into the assistant placeholder

Remote rejections are turned into synthesized events that end with a
terminal ``ad`` record, so a caller always sees a well-formed end of turn.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from arenabridge.core.config import ArenaSettings, get_settings
from arenabridge.core.errors import TransportError
from arenabridge.core.session_manager import SessionManager
from arenabridge.core.transport import BridgeRequest, BridgeResponse, Transport
from arenabridge.models.events import FINISH_ERROR, FINISH_RETRY, EventCode, StreamEvent
from arenabridge.models.session import ChatMessage, ConversationSession
from arenabridge.protocol.stream import decode_stream

logger = logging.getLogger(__name__)

# Obtains a fresh anonymous account; True on success
AuthRefresh = Callable[[], Awaitable[bool]]

RATELIMIT_MODALITY_HEADER = "ratelimit-modality"

RATELIMIT_REFRESHED = "Anonymous image ratelimit reached, got new session. Try again."
RATELIMIT_REFRESH_FAILED = "Anonymous image ratelimit reached, but could not refresh token."


def build_legacy_payload(session: ConversationSession) -> dict[str, Any]:
    """Full snapshot of the wire graph; the service rebuilds state from it."""
    return {
        "id": session.session_id,
        "messages": [msg.to_wire() for msg in session.wire_messages],
        "modality": session.modality,
        "mode": session.mode,
        "modelAId": session.model_id,
        "modelAMessageId": session.assistant_message_id,
        "userMessageId": session.user_message_id,
    }


def build_v2_payload(session: ConversationSession) -> dict[str, Any]:
    """Only the triggering message; the service keeps history server-side."""
    user_msg = session.find_wire_message(session.user_message_id)
    return {
        "id": session.session_id,
        "mode": session.mode,
        "modelAId": session.model_id,
        "userMessageId": session.user_message_id,
        "modelAMessageId": session.assistant_message_id,
        "userMessage": {
            "content": user_msg.content if user_msg else "",
            "experimental_attachments": (
                [att.model_dump(mode="json", by_alias=True) for att in user_msg.experimental_attachments]
                if user_msg
                else []
            ),
        },
        "modality": session.modality or "chat",
        "featureFlags": {"editImageButtonEnabled": "control"},
    }


PAYLOAD_BUILDERS = {
    "legacy": build_legacy_payload,
    "v2": build_v2_payload,
}


class ConversationOrchestrator:
    """
    Runs turns of a conversation against the service.

    Args:
        transport: Executes requests as the browser identity
        sessions: Owns the message graphs
        auth_refresh: Rotates the anonymous account on image rate limits
        settings: Service settings (base URL, protocol version)
    """

    def __init__(
        self,
        transport: Transport,
        sessions: SessionManager,
        auth_refresh: AuthRefresh | None = None,
        settings: ArenaSettings | None = None,
    ):
        self.transport = transport
        self.sessions = sessions
        self.auth_refresh = auth_refresh
        self.settings = settings or get_settings()

    # ── Request construction ──────────────────────────────────────────

    def endpoint(self, session: ConversationSession, retry: bool = False) -> tuple[str, str]:
        """Return (method, url) for the next turn of ``session``."""
        sid = session.session_id
        if retry:
            aid = session.assistant_message_id
            return "PUT", self.settings.url(
                f"/nextjs-api/stream/retry-evaluation-session-message/{sid}/messages/{aid}"
            )
        if not session.exists:
            return "POST", self.settings.url("/nextjs-api/stream/create-evaluation")
        return "POST", self.settings.url(f"/nextjs-api/stream/post-to-evaluation/{sid}")

    def build_request(self, session: ConversationSession, retry: bool = False) -> BridgeRequest:
        method, url = self.endpoint(session, retry)
        payload = PAYLOAD_BUILDERS[self.settings.protocol](session)
        headers = {"Referer": self.settings.url(f"/c/{session.session_id}")}
        if self.settings.protocol == "v2":
            headers["Content-Type"] = "application/json"
        return BridgeRequest(url=url, method=method, headers=headers, body=json.dumps(payload))

    # ── Turn ──────────────────────────────────────────────────────────

    async def run_turn(
        self,
        session: ConversationSession,
        message: ChatMessage | None = None,
        retry: bool = False,
        history: list[ChatMessage] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Run one turn and yield its events.

        Args:
            session: The conversation; turns on one session must not overlap
            message: Outgoing message, appended before sending
            retry: Re-run the active turn through the retry endpoint
            history: Replace the conversation history before this turn

        Yields:
            Decoded (or synthesized) events, ending with an ``ad`` event
            unless the caller stops early
        """
        if history is not None:
            await self.sessions.replace_history(session, history)
        if message is not None:
            await self.sessions.append_message(session, message)
        if retry:
            self.sessions.begin_retry(session)

        request = self.build_request(session, retry)
        logger.debug(f"Turn {request.method} {request.url}")

        try:
            response = await self.transport.send(request)
        except TransportError as e:
            logger.error(f"Turn request failed: {e}")
            for event in self._failure_events(f"Error: request failed ({e})"):
                yield event
            return

        try:
            if not response.ok:
                async for event in self._recover(response):
                    yield event
                return

            session.exists = True
            placeholder = self.sessions.placeholder_for_turn(session)
            try:
                async for event in decode_stream(response.aiter_bytes(), placeholder):
                    yield event
            except TransportError as e:
                logger.error(f"Turn stream interrupted: {e}")
                for event in self._failure_events(f"Error: stream interrupted ({e})"):
                    yield event
        finally:
            await response.aclose()

    async def _recover(self, response: BridgeResponse) -> AsyncIterator[StreamEvent]:
        """Translate a non-success response into terminal events."""
        try:
            error_text = await response.text()
        except TransportError:
            error_text = ""

        if response.status == 422:
            logger.info("Turn rejected by content policy")
            yield StreamEvent(
                event=EventCode.MODERATION.value,
                data=f"Error: Prompt violates [LMArena ToS]({self.settings.terms_url})",
            )
            yield StreamEvent.finish(FINISH_ERROR)
            return

        if response.status == 429 and response.header(RATELIMIT_MODALITY_HEADER) == "image":
            refreshed = False
            if self.auth_refresh is not None:
                try:
                    refreshed = await self.auth_refresh()
                except Exception:
                    logger.exception("Auth refresh raised")
                    refreshed = False
            if refreshed:
                yield StreamEvent.text(RATELIMIT_REFRESHED)
                yield StreamEvent.finish(FINISH_RETRY)
            else:
                yield StreamEvent.text(RATELIMIT_REFRESH_FAILED)
                yield StreamEvent.finish(FINISH_ERROR)
            return

        error_message = _error_message(error_text)
        if error_message is not None:
            yield StreamEvent.text(f"Error: {error_message}")
            yield StreamEvent.finish(FINISH_ERROR)
            return

        # Unclassified failure: still end the turn with a terminal event
        logger.warning(f"Unhandled response status {response.status}: {error_text[:200]}")
        for event in self._failure_events(
            f"Error: request failed with status {response.status} {response.status_text}".rstrip()
        ):
            yield event

    @staticmethod
    def _failure_events(description: str) -> list[StreamEvent]:
        return [
            StreamEvent(event=EventCode.ERROR.value, data=description),
            StreamEvent.finish(FINISH_ERROR),
        ]


def _error_message(body: str) -> str | None:
    """Extract the message of a ``{"error": ...}`` body, if that is what it is."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(data, dict) and "error" in data:
        error = data["error"]
        return error if isinstance(error, str) else json.dumps(error)
    return None
