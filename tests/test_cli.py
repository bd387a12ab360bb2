"""
Tests for CLI commands.
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from arenabridge.cli.main import cli
from arenabridge.core.errors import ArenaError
from arenabridge.core.model_catalog import ModelCatalog
from arenabridge.models.events import StreamEvent


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_args(tmp_path):
    return ["--config", str(tmp_path / "config.yaml")]


class FakeChat:
    def __init__(self, turns):
        self.turns = list(turns)
        self.sent = []
        self.added = []
        self.shuffles = 0

    async def send_message(self, message, retry=False):
        self.sent.append(message)
        for event in self.turns.pop(0):
            yield event

    async def add_message(self, message):
        self.added.append(message)

    def shuffle_session(self):
        self.shuffles += 1


class FakeClient:
    """Replaces ArenaClient; no browser is launched."""

    chat: FakeChat = None
    start_error: Exception | None = None

    def __init__(self, settings=None):
        self.settings = settings
        self.catalog = ModelCatalog(self._models)

    async def _models(self):
        return [
            {"id": "1", "publicName": "gpt-test", "organization": "openai"},
            {
                "id": "2",
                "publicName": "painter",
                "capabilities": {"outputCapabilities": {"image": True}},
            },
        ]

    async def __aenter__(self):
        if self.start_error is not None:
            raise self.start_error
        await self.catalog.refresh()
        return self

    async def __aexit__(self, *exc_info):
        return None

    def start_chat(self, model, modality="chat"):
        self.catalog.get(model)
        return self.chat


@pytest.fixture
def fake_client():
    FakeClient.chat = None
    FakeClient.start_error = None
    with patch("arenabridge.cli.main.ArenaClient", FakeClient):
        yield FakeClient


class TestCliHelp:
    def test_main_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "models" in result.output
        assert "chat" in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "arenabridge, version" in result.output


class TestModelsCommand:
    def test_lists_models(self, runner, fake_client, config_args):
        result = runner.invoke(cli, config_args + ["models"])
        assert result.exit_code == 0
        assert "gpt-test" in result.output
        assert "painter" in result.output

    def test_startup_error(self, runner, fake_client, config_args):
        fake_client.start_error = ArenaError("No models found after 30 attempts")
        result = runner.invoke(cli, config_args + ["models"])
        assert result.exit_code == 1

    def test_invalid_config(self, runner, fake_client, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("protocol: nope\n")
        result = runner.invoke(cli, ["--config", str(path), "models"])
        assert result.exit_code == 1


class TestChatCommand:
    def test_single_prompt(self, runner, fake_client, config_args):
        fake_client.chat = FakeChat([[StreamEvent.text("Hello"), StreamEvent.text(" world"), StreamEvent.finish("stop")]])

        result = runner.invoke(cli, config_args + ["chat", "gpt-test", "-p", "hi", "-s", "be nice"])

        assert result.exit_code == 0
        assert "Hello world" in result.output
        assert fake_client.chat.sent[0].content == "hi"
        assert fake_client.chat.added[0].role == "system"

    def test_error_turn_exits_nonzero(self, runner, fake_client, config_args):
        fake_client.chat = FakeChat([[StreamEvent(event="a3", data="boom"), StreamEvent.finish("err")]])

        result = runner.invoke(cli, config_args + ["chat", "gpt-test", "-p", "hi"])

        assert result.exit_code == 1

    def test_retry_restarts_turn_on_new_session(self, runner, fake_client, config_args):
        fake_client.chat = FakeChat(
            [
                [StreamEvent.text("ratelimited"), StreamEvent.finish("retry")],
                [StreamEvent.text("picture ready"), StreamEvent.finish("stop")],
            ]
        )

        result = runner.invoke(cli, config_args + ["chat", "painter", "--modality", "image", "-p", "draw"])

        assert result.exit_code == 0
        assert fake_client.chat.shuffles == 1
        assert [m.content for m in fake_client.chat.sent] == ["draw", "draw"]
        assert "picture ready" in result.output

    def test_unknown_model(self, runner, fake_client, config_args):
        fake_client.chat = FakeChat([])
        result = runner.invoke(cli, config_args + ["chat", "nope", "-p", "hi"])
        assert result.exit_code == 1

    def test_interactive_session(self, runner, fake_client, config_args):
        fake_client.chat = FakeChat(
            [
                [StreamEvent.text("first answer"), StreamEvent.finish("stop")],
                [StreamEvent.text("second answer"), StreamEvent.finish("stop")],
            ]
        )

        result = runner.invoke(cli, config_args + ["chat", "gpt-test"], input="one\ntwo\n\n")

        assert result.exit_code == 0
        assert [m.content for m in fake_client.chat.sent] == ["one", "two"]

    def test_image_must_be_an_image(self, runner, fake_client, config_args, tmp_path):
        document = tmp_path / "notes.txt"
        document.write_text("not a picture")
        fake_client.chat = FakeChat([])

        result = runner.invoke(cli, config_args + ["chat", "gpt-test", "-p", "hi", "-i", str(document)])

        assert result.exit_code == 2
        assert "not a supported image type" in result.output
        assert fake_client.chat.sent == []
