"""
Anonymous account rotation.

Anonymous users get a small image-generation quota. When it runs out the
service answers 429 with ``ratelimit-modality: image``; a fresh anonymous
account is obtained by dropping the auth cookies, picking up a new
provisional user id from the home page, and signing it up with a clearance
token.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Protocol

from arenabridge.core.config import ArenaSettings, get_settings
from arenabridge.core.errors import TransportError
from arenabridge.core.transport import BridgeRequest, Transport

logger = logging.getLogger(__name__)

AUTH_COOKIE = "arena-auth-prod-v1"
PROVISIONAL_USER_COOKIE = "provisional_user_id"

# Produces a clearance (challenge) token; solving the challenge is external
ChallengeSolver = Callable[[], Awaitable[str]]


class CookieJar(Protocol):
    """The identity's cookie store plus the lock guarding it."""

    identity_lock: Any

    async def get_cookie(self, name: str) -> dict[str, Any] | None: ...

    async def delete_cookie(self, name: str) -> bool: ...


class AuthRefresher:
    """Replaces the browser identity's anonymous account.

    Refreshes are serialized on the identity's lock, since every session
    shares the same cookies.
    """

    def __init__(
        self,
        identity: CookieJar,
        transport: Transport,
        solve_challenge: ChallengeSolver | None = None,
        settings: ArenaSettings | None = None,
    ):
        self.identity = identity
        self.transport = transport
        self.solve_challenge = solve_challenge
        self.settings = settings or get_settings()

    async def refresh(self) -> bool:
        """Obtain a new anonymous account. Returns True on success."""
        async with self.identity.identity_lock:
            try:
                return await self._refresh()
            except TransportError as e:
                logger.error(f"Auth refresh failed: {e}")
                return False
            except Exception:
                logger.exception("Auth refresh failed unexpectedly")
                return False

    async def _refresh(self) -> bool:
        await self.identity.delete_cookie(AUTH_COOKIE)
        await self.identity.delete_cookie(PROVISIONAL_USER_COOKIE)
        logger.debug("Deleted auth cookies")

        home = await self.transport.send(BridgeRequest(url=self.settings.url("/"), method="GET"))
        await home.aread()

        cookie = await self.identity.get_cookie(PROVISIONAL_USER_COOKIE)
        if not cookie:
            logger.error("Failed to get provisional user id")
            return False

        if self.solve_challenge is None:
            logger.error("No challenge solver configured, cannot sign up a new user")
            return False

        logger.info("Getting clearance token")
        token = await self.solve_challenge()

        response = await self.transport.send(
            BridgeRequest(
                url=self.settings.url("/nextjs-api/sign-up"),
                method="POST",
                headers={"Content-Type": "text/plain;charset=UTF-8"},
                body=json.dumps(
                    {"turnstileToken": token, "provisionalUserId": cookie["value"]}
                ),
            )
        )
        body = await response.text()
        if response.ok:
            logger.info("Updated anonymous user")
            return True

        logger.error(f"Failed to update user: {response.status}")
        logger.debug(body)
        return False
