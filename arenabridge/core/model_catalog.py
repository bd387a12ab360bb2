"""
Model catalog read from the service's web app.

The app server-renders its model list into the page, so the catalog is
(re)read after each page load. Models are looked up by public name.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from arenabridge.core.errors import ArenaError, ModelNotFoundError
from arenabridge.models.session import ModelDescriptor

logger = logging.getLogger(__name__)


class ModelCatalog:
    """
    Process-wide cache of the service's models.

    Args:
        fetch: Returns the raw model entries of the current page
        attempts: How many times to poll ``fetch`` for a non-empty list
        delay: Seconds between polls
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[list[dict[str, Any]]]],
        attempts: int = 30,
        delay: float = 1.0,
    ):
        self._fetch = fetch
        self.attempts = attempts
        self.delay = delay
        self._models: dict[str, ModelDescriptor] = {}
        self._lock = asyncio.Lock()

    async def refresh(self) -> list[ModelDescriptor]:
        """
        Re-read the catalog, polling until the page has rendered it.

        Raises:
            ArenaError: If no models appear within the configured attempts
        """
        async with self._lock:
            for attempt in range(1, self.attempts + 1):
                raw = await self._fetch()
                if raw:
                    break
                logger.info(f"Model list empty, retrying ({attempt}/{self.attempts})")
                await asyncio.sleep(self.delay)
            else:
                raise ArenaError(f"No models found after {self.attempts} attempts")

            models: dict[str, ModelDescriptor] = {}
            for entry in raw:
                try:
                    model = ModelDescriptor.model_validate(entry)
                except ValidationError:
                    logger.debug(f"Skipping unreadable model entry: {entry!r:.200}")
                    continue
                models[model.public_name] = model

            self._models = models
            logger.info(f"Loaded {len(models)} models")
            return list(models.values())

    def get(self, name: str) -> ModelDescriptor:
        model = self._models.get(name)
        if model is None:
            raise ModelNotFoundError(name)
        return model

    def names(self) -> list[str]:
        return sorted(self._models)

    def __contains__(self, name: str) -> bool:
        return name in self._models

    def __len__(self) -> int:
        return len(self._models)
