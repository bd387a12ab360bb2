"""Tests for the model catalog."""

import pytest

from arenabridge.core.errors import ArenaError, ModelNotFoundError
from arenabridge.core.model_catalog import ModelCatalog

MODELS = [
    {"id": "id-b", "publicName": "beta", "organization": "b-corp"},
    {"id": "id-a", "publicName": "alpha", "capabilities": {"outputCapabilities": {"image": True}}},
]


def _fetcher(*results):
    calls = []
    pending = list(results)

    async def fetch():
        calls.append(1)
        return pending.pop(0) if pending else []

    fetch.calls = calls
    return fetch


class TestModelCatalog:
    @pytest.mark.asyncio
    async def test_refresh_and_lookup(self):
        catalog = ModelCatalog(_fetcher(MODELS), delay=0)

        models = await catalog.refresh()

        assert len(models) == 2
        assert len(catalog) == 2
        assert catalog.names() == ["alpha", "beta"]
        assert catalog.get("alpha").id == "id-a"
        assert catalog.get("alpha").supports_output("image")
        assert not catalog.get("beta").supports_input("image")
        assert "beta" in catalog

    @pytest.mark.asyncio
    async def test_polls_until_models_render(self):
        fetch = _fetcher([], [], MODELS)
        catalog = ModelCatalog(fetch, attempts=5, delay=0)

        await catalog.refresh()

        assert len(fetch.calls) == 3
        assert len(catalog) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        fetch = _fetcher()
        catalog = ModelCatalog(fetch, attempts=3, delay=0)

        with pytest.raises(ArenaError, match="No models found"):
            await catalog.refresh()
        assert len(fetch.calls) == 3

    @pytest.mark.asyncio
    async def test_unreadable_entries_skipped(self):
        catalog = ModelCatalog(_fetcher([{"id": "x"}, "junk", MODELS[0]]), delay=0)

        await catalog.refresh()

        assert catalog.names() == ["beta"]

    @pytest.mark.asyncio
    async def test_refresh_replaces_catalog(self):
        catalog = ModelCatalog(_fetcher(MODELS, [MODELS[1]]), delay=0)
        await catalog.refresh()
        await catalog.refresh()
        assert catalog.names() == ["alpha"]

    def test_unknown_model(self):
        catalog = ModelCatalog(_fetcher(), delay=0)
        with pytest.raises(ModelNotFoundError, match="Model with name 'nope' not found."):
            catalog.get("nope")
