"""
CLI entry point for arenabridge.
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

try:
    from importlib.metadata import version as pkg_version

    _version = pkg_version("arenabridge")
except Exception:
    _version = "0.3.0"

from arenabridge.core.client import ArenaClient, Chat
from arenabridge.core.config import load_settings
from arenabridge.core.errors import ArenaError
from arenabridge.models.events import EventCode
from arenabridge.models.session import ChatMessage
from arenabridge.utils.media import attachment_from_path, guess_mime, is_image

console = Console()
console_err = Console(stderr=True)

# A turn answered with "ad: retry" is restarted at most this many times
MAX_TURN_RESTARTS = 3


def _settings_from(ctx: click.Context):
    config_path = ctx.obj.get("config")
    return load_settings(Path(config_path) if config_path else None)


@click.group()
@click.version_option(version=_version, prog_name="arenabridge")
@click.option("--debug", is_flag=True, hidden=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Settings file (default: ~/.arenabridge/config.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config_path: str | None):
    """
    arenabridge: chat with LMArena models from the terminal.

    \b
        arenabridge models                  # List available models
        arenabridge chat MODEL              # Interactive chat
        arenabridge chat MODEL -p "hello"   # Single prompt
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config"] = config_path

    if debug:
        logging.basicConfig(level=logging.DEBUG, format="[%(levelname)s] %(name)s: %(message)s")
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# models
# =============================================================================


async def _list_models(client: ArenaClient) -> None:
    async with client:
        table = Table(title="Models")
        table.add_column("Name", style="cyan")
        table.add_column("Organization")
        table.add_column("Image in", justify="center")
        table.add_column("Image out", justify="center")
        for name in client.catalog.names():
            model = client.catalog.get(name)
            table.add_row(
                name,
                model.organization or "",
                "✓" if model.supports_input("image") else "",
                "✓" if model.supports_output("image") else "",
            )
        console.print(table)


@cli.command()
@click.pass_context
def models(ctx: click.Context):
    """List the models the service offers."""
    try:
        client = ArenaClient(settings=_settings_from(ctx))
        asyncio.run(_list_models(client))
    except ArenaError as e:
        console_err.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)


# =============================================================================
# chat
# =============================================================================


async def _run_turn(chat: Chat, message: ChatMessage) -> bool:
    """Stream one turn to the console. Returns False if it ended in an error."""
    for _ in range(MAX_TURN_RESTARTS + 1):
        restart = False
        ok = True
        async for event in chat.send_message(message):
            if event.event == EventCode.TEXT.value:
                console.print(event.data, end="", markup=False, highlight=False)
            elif event.event == EventCode.MODERATION.value:
                console.print(f"[yellow]{event.data}[/yellow]", end="")
            elif event.event == EventCode.ERROR.value:
                console_err.print(f"[red]{event.data}[/red]")
            elif event.event == EventCode.DATA.value:
                for item in event.data or []:
                    if isinstance(item, dict) and item.get("type") == "image":
                        console.print(f"\n[cyan]Image:[/cyan] {item.get('image')}")
            elif event.is_terminal:
                restart = event.requests_retry
                ok = not event.is_error
        console.print()
        if not restart:
            return ok
        # The account was rotated; start the turn over on a fresh session
        chat.shuffle_session()
        message = ChatMessage(role=message.role, content=message.content, attachments=message.attachments)
    console_err.print("[red]Giving up after repeated rate limits.[/red]")
    return False


async def _chat(
    client: ArenaClient,
    model: str,
    modality: str,
    system: str | None,
    prompt: str | None,
    image: str | None,
) -> int:
    async with client:
        chat = client.start_chat(model, modality)
        if system:
            await chat.add_message(ChatMessage(role="system", content=system))

        attachments = [attachment_from_path(image)] if image else []
        if prompt is not None:
            ok = await _run_turn(chat, ChatMessage(role="user", content=prompt, attachments=attachments))
            return 0 if ok else 1

        console.print(f"[dim]Chatting with {model}. Empty line or Ctrl-D to quit.[/dim]")
        while True:
            try:
                text = await asyncio.to_thread(console.input, "[bold green]> [/bold green]")
            except EOFError:
                break
            if not text.strip():
                break
            await _run_turn(chat, ChatMessage(role="user", content=text, attachments=attachments))
            attachments = []
        return 0


@cli.command()
@click.argument("model")
@click.option(
    "--modality",
    type=click.Choice(["chat", "image"]),
    default="chat",
    show_default=True,
    help="Conversation modality",
)
@click.option("--system", "-s", default=None, help="System prompt")
@click.option("--prompt", "-p", default=None, help="Send one prompt and exit")
@click.option(
    "--image",
    "-i",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Attach an image to the first message",
)
@click.pass_context
def chat(
    ctx: click.Context,
    model: str,
    modality: str,
    system: str | None,
    prompt: str | None,
    image: str | None,
):
    """Chat with MODEL (its public name, see `arenabridge models`)."""
    if image and not is_image(guess_mime(image)):
        raise click.BadParameter(f"{image} is not a supported image type", param_hint="--image")
    try:
        client = ArenaClient(settings=_settings_from(ctx))
        code = asyncio.run(_chat(client, model, modality, system, prompt, image))
    except ArenaError as e:
        console_err.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)
    raise SystemExit(code)


if __name__ == "__main__":
    cli()
