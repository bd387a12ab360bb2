"""
Server-action id discovery.

Auxiliary calls (attachment upload) go through Next.js server actions, which
are addressed by opaque ids that change with every deployment. The ids are
found by scanning the app's own script bundles for the
``createServerReference("<id>", ..., "<debugName>")`` call that registers
each action.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable

from arenabridge.core.config import ArenaSettings, get_settings
from arenabridge.core.errors import ActionNotFoundError
from arenabridge.core.transport import BridgeRequest, Transport

logger = logging.getLogger(__name__)

# Logical action key -> debug name compiled into the bundle
ACTION_DEBUG_NAMES = {
    "ATTACHMENT_URL_INIT": "generateUploadUrl",
    "ATTACHMENT_FETCH_URL": "getSignedUrl",
}


def action_pattern(debug_name: str) -> re.Pattern[str]:
    """Regex matching the registration of one server action."""
    return re.compile(
        r"\(0,[A-Za-z0-9_$]*\.createServerReference\)\(\"([0-9a-f]+)\","
        r"[A-Za-z0-9_$]*\.callServer,void 0,[A-Za-z0-9_$]*\.findSourceMapURL,"
        rf"\"{re.escape(debug_name)}\"\)"
    )


class ActionResolver:
    """
    Resolves and caches server-action ids.

    Args:
        transport: Used to download script bundles as the browser identity
        list_scripts: Returns the URLs of the scripts the page has loaded
        settings: Service settings (script chunk prefix)
    """

    def __init__(
        self,
        transport: Transport,
        list_scripts: Callable[[], Awaitable[list[str]]],
        settings: ArenaSettings | None = None,
    ):
        self.transport = transport
        self.list_scripts = list_scripts
        self.settings = settings or get_settings()
        self._action_cache: dict[str, str] = {}
        self._script_cache: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def resolve(self, key: str) -> str:
        """
        Get the server-action id for a logical key.

        Raises:
            ValueError: If the key is unknown
            ActionNotFoundError: If no loaded bundle registers the action
        """
        if key in self._action_cache:
            return self._action_cache[key]

        debug_name = ACTION_DEBUG_NAMES.get(key)
        if debug_name is None:
            raise ValueError(f"Invalid action key: {key}")

        async with self._lock_for(key):
            if key in self._action_cache:
                return self._action_cache[key]
            matches = await self.find_action_ids(debug_name)
            if not matches:
                raise ActionNotFoundError(key)
            logger.debug(f"Resolved action {key} -> {matches[0]}")
            self._action_cache[key] = matches[0]
            return matches[0]

    async def find_action_ids(self, debug_name: str) -> list[str]:
        """Scan every loaded app chunk for registrations of ``debug_name``."""
        pattern = action_pattern(debug_name)
        prefix = self.settings.script_chunk_prefix
        urls = [url for url in await self.list_scripts() if url.startswith(prefix)]

        results: list[str] = []
        for url in urls:
            text = await self._script_text(url)
            match = pattern.search(text)
            if match:
                results.append(match.group(1))
        return results

    async def _script_text(self, url: str) -> str:
        if url in self._script_cache:
            return self._script_cache[url]
        response = await self.transport.send(BridgeRequest(url=url, method="GET"))
        text = await response.text()
        self._script_cache[url] = text
        return text

    def clear(self) -> None:
        """Forget cached ids and scripts, e.g. after a redeploy."""
        self._action_cache.clear()
        self._script_cache.clear()
