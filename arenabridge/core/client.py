"""
Client facade: wires the browser identity, transport and conversation
machinery together and hands out ``Chat`` objects.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from arenabridge.core.actions import ActionResolver
from arenabridge.core.auth import AuthRefresher, ChallengeSolver
from arenabridge.core.browser import BrowserIdentity
from arenabridge.core.config import ArenaSettings, get_settings
from arenabridge.core.model_catalog import ModelCatalog
from arenabridge.core.orchestrator import ConversationOrchestrator
from arenabridge.core.session_manager import SessionManager
from arenabridge.core.transport import BridgeRequest, BridgeResponse, BrowserTransport, Transport
from arenabridge.core.uploads import AttachmentUploader
from arenabridge.models.events import StreamEvent
from arenabridge.models.session import ChatMessage, ConversationSession, ModelDescriptor

logger = logging.getLogger(__name__)


class Chat:
    """One conversation. Turns must be consumed one at a time."""

    def __init__(self, orchestrator: ConversationOrchestrator, session: ConversationSession):
        self.orchestrator = orchestrator
        self.session = session

    async def send_message(
        self, message: ChatMessage, retry: bool = False
    ) -> AsyncIterator[StreamEvent]:
        """Append ``message`` and stream the assistant's reply."""
        async for event in self.orchestrator.run_turn(self.session, message, retry=retry):
            yield event

    async def retry(self) -> AsyncIterator[StreamEvent]:
        """Regenerate the reply to the last user message."""
        async for event in self.orchestrator.run_turn(self.session, retry=True):
            yield event

    async def add_message(self, message: ChatMessage) -> None:
        """Append a message (e.g. a system prompt) without running a turn."""
        await self.orchestrator.sessions.append_message(self.session, message)

    def shuffle_session(self) -> None:
        """Continue the conversation under a new remote session."""
        self.orchestrator.sessions.reset(self.session)

    @property
    def history(self) -> list[ChatMessage]:
        return self.session.messages

    @property
    def last_reply(self) -> str:
        """Text accumulated so far for the active turn."""
        placeholder = self.session.find_wire_message(self.session.assistant_message_id)
        return placeholder.content if placeholder else ""


class ArenaClient:
    """
    Entry point for conversations with the service.

    Usage:
        async with ArenaClient() as client:
            chat = client.start_chat("gpt-4o")
            async for event in chat.send_message(ChatMessage(role="user", content="hi")):
                ...

    Args:
        settings: Runtime settings (default: loaded from config/env)
        identity: Browser identity (default: a new BrowserIdentity)
        transport: Request transport (default: bridge into the identity's page)
        solve_challenge: Produces clearance tokens for account rotation
    """

    def __init__(
        self,
        settings: ArenaSettings | None = None,
        identity: BrowserIdentity | None = None,
        transport: Transport | None = None,
        solve_challenge: ChallengeSolver | None = None,
    ):
        self.settings = settings or get_settings()
        self.identity = identity or BrowserIdentity(self.settings)
        self._transport = transport
        self._solve_challenge = solve_challenge

        self.catalog = ModelCatalog(
            self.identity.read_models,
            attempts=self.settings.model_fetch_attempts,
            delay=self.settings.model_fetch_delay,
        )
        self.actions: ActionResolver | None = None
        self.uploader: AttachmentUploader | None = None
        self.auth: AuthRefresher | None = None
        self.sessions: SessionManager | None = None
        self.orchestrator: ConversationOrchestrator | None = None

    @property
    def transport(self) -> Transport:
        if self._transport is None:
            raise RuntimeError("ArenaClient not started")
        return self._transport

    async def start(self) -> None:
        """Launch the browser identity and load the model catalog."""
        await self.identity.start()
        if self._transport is None:
            self._transport = BrowserTransport(self.identity.page)
        self._wire()
        await self.catalog.refresh()

    def _wire(self) -> None:
        self.actions = ActionResolver(self.transport, self.identity.loaded_scripts, self.settings)
        self.uploader = AttachmentUploader(self.transport, self.actions, self.settings)
        self.auth = AuthRefresher(self.identity, self.transport, self._solve_challenge, self.settings)
        self.sessions = SessionManager(uploader=self.uploader.upload)
        self.orchestrator = ConversationOrchestrator(
            self.transport, self.sessions, auth_refresh=self.auth.refresh, settings=self.settings
        )

    async def close(self) -> None:
        await self.identity.close()

    async def __aenter__(self) -> ArenaClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def refetch_models(self) -> list[ModelDescriptor]:
        """Reload the page and re-read the model catalog."""
        await self.identity.reload()
        return await self.catalog.refresh()

    def start_chat(self, model_name: str, modality: str = "chat") -> Chat:
        """
        Start a new conversation.

        Raises:
            ModelNotFoundError: If ``model_name`` is not a public model name
        """
        if self.orchestrator is None or self.sessions is None:
            raise RuntimeError("ArenaClient not started")
        model = self.catalog.get(model_name)
        session = self.sessions.create_session(model, modality)
        logger.debug(f"Started session {session.session_id} with {model_name} ({modality})")
        return Chat(self.orchestrator, session)

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: str | None = None,
    ) -> BridgeResponse:
        """Make an authenticated request as the browser identity."""
        return await self.transport.send(
            BridgeRequest(url=url, method=method, headers=headers or {}, body=body)
        )
