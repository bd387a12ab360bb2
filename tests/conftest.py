"""
Pytest fixtures for arenabridge tests.
"""

import asyncio
import os

import pytest

from arenabridge.core.config import ArenaSettings, reset_settings
from arenabridge.core.session_manager import SessionManager
from arenabridge.core.transport import BridgeRequest, BridgeResponse
from arenabridge.models.session import ModelDescriptor


@pytest.fixture(autouse=True)
def _clean_env():
    """Prevent environment variable and settings pollution between tests."""
    original_env = os.environ.copy()
    reset_settings()
    yield
    os.environ.clear()
    os.environ.update(original_env)
    reset_settings()


def make_response(
    status: int = 200,
    chunks: list[str | bytes] | None = None,
    headers: dict[str, str] | None = None,
) -> BridgeResponse:
    """Build a response whose whole body is already queued."""
    response = BridgeResponse(status=status, headers=headers)
    for chunk in chunks or []:
        response.feed(chunk)
    response.finish()
    return response


class FakeTransport:
    """Transport double that replays canned responses and records requests."""

    def __init__(self, *responses: BridgeResponse):
        self.responses = list(responses)
        self.requests: list[BridgeRequest] = []

    def queue(self, response: BridgeResponse) -> None:
        self.responses.append(response)

    async def send(self, request: BridgeRequest) -> BridgeResponse:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeIdentity:
    """Stands in for BrowserIdentity: cookies in a dict, no browser."""

    def __init__(self, models=None, scripts=None):
        self.identity_lock = asyncio.Lock()
        self.cookies: dict[str, dict] = {}
        self.models = models or []
        self.scripts = scripts or []
        self.started = False
        self.closed = False
        self.reloads = 0
        self.page = object()

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True

    async def reload(self):
        self.reloads += 1

    async def read_models(self):
        return self.models

    async def loaded_scripts(self):
        return self.scripts

    async def get_cookie(self, name):
        return self.cookies.get(name)

    async def delete_cookie(self, name):
        return self.cookies.pop(name, None) is not None


@pytest.fixture
def settings():
    return ArenaSettings(base_url="https://arena.test", model_fetch_delay=0)


@pytest.fixture
def model():
    return ModelDescriptor(
        id="model-123",
        publicName="test-model",
        organization="acme",
        capabilities={"inputCapabilities": {"text": True, "image": True}},
    )


@pytest.fixture
def session_manager():
    return SessionManager()


@pytest.fixture
def session(session_manager, model):
    return session_manager.create_session(model, "chat")
