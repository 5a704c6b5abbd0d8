"""CLI interface for llmchat."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import click

from . import __version__
from .config import (
    DATA_DIR,
    DEFAULT_MODEL,
    ENDPOINT_MODE,
    ENGINE_URL,
    RELAY_HOST,
    RELAY_PORT,
    RELAY_URL,
    SQLITE_PATH,
)
from .errors import TransportError
from .models import EndpointMode, Message, new_chat_id
from .storage import ConversationStore
from .thoughts import split_thoughts


def endpoint_options(f):
    """Options shared by every command that talks to the engine or relay."""
    f = click.option(
        "--model", default=DEFAULT_MODEL, show_default=True, help="Model to generate with"
    )(f)
    f = click.option("--relay-url", default=RELAY_URL, show_default=True)(f)
    f = click.option("--engine-url", default=ENGINE_URL, show_default=True)(f)
    f = click.option(
        "--mode",
        type=click.Choice([m.value for m in EndpointMode]),
        default=ENDPOINT_MODE,
        show_default=True,
        help="local: talk to the engine directly. relay: go through the relay server.",
    )(f)
    return f


def _transport(store, mode, engine_url, relay_url, model):
    from .transport import ConversationTransport

    return ConversationTransport(
        store,
        EndpointMode(mode),
        engine_url=engine_url,
        relay_url=relay_url,
        model=model,
    )


class StreamPrinter:
    """Echo a bot reply as it grows, printing only the new text each time."""

    def __init__(self):
        self.printed = ""

    def __call__(self, message: Message):
        if message.loading:
            return
        content = message.content
        if content.startswith(self.printed):
            click.echo(content[len(self.printed) :], nl=False)
        else:
            # The reply was replaced, e.g. by an error
            click.echo()
            click.echo(click.style(content, fg="red"), nl=False)
        self.printed = content

    def finish(self):
        click.echo()
        self.printed = ""


def _watch_interrupt(cancel: asyncio.Event) -> bool:
    """Make Ctrl-C cancel the running generation instead of the program."""
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel.set)
    except (NotImplementedError, RuntimeError):
        return False
    return True


def _unwatch_interrupt():
    asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)


async def _send_turn(transport, chat_id: str, text: str):
    from .transport import SendState

    printer = StreamPrinter()
    cancel = asyncio.Event()
    watching = _watch_interrupt(cancel)
    try:
        result = await transport.send_message(chat_id, text, sink=printer, cancel=cancel)
    finally:
        if watching:
            _unwatch_interrupt()
    printer.finish()
    if result.state is SendState.CANCELLED:
        click.echo(click.style("[cancelled]", dim=True))
    return result


@click.group()
@click.version_option(version=__version__, prog_name="llmchat")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
def cli(verbose: bool):
    """llmchat — Chat with a local LLM engine from your terminal.

    Talks to the engine directly (local mode) or through the llmchat relay
    server (relay mode), streaming replies as they are generated. Chats are
    kept in a local history.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


@cli.command()
@click.option("--chat-id", help="Continue an existing chat instead of starting a new one")
@endpoint_options
def chat(chat_id: str | None, mode: str, engine_url: str, relay_url: str, model: str):
    """Start an interactive chat. Ctrl-C stops a reply, Ctrl-D quits."""
    store = ConversationStore(SQLITE_PATH)

    if chat_id:
        existing = store.get(chat_id)
        if existing is None:
            store.close()
            raise click.ClickException(f"Chat not found: {chat_id}")
        click.echo(click.style(existing.name or chat_id, bold=True))
        _print_messages(existing.messages, show_thoughts=False)
    else:
        chat_id = new_chat_id()

    # One event loop for the whole session so the HTTP client and background
    # naming survive between turns
    with asyncio.Runner() as runner:
        transport = _transport(store, mode, engine_url, relay_url, model)
        try:
            while True:
                try:
                    text = click.prompt(click.style("You", bold=True))
                except click.Abort:
                    click.echo()
                    break
                if not text.strip():
                    continue
                click.echo(click.style("Bot: ", bold=True), nl=False)
                runner.run(_send_turn(transport, chat_id, text))
        finally:
            runner.run(transport.aclose())

    saved = store.get(chat_id)
    store.close()
    if saved is not None:
        click.echo(f"Saved chat {chat_id}: {saved.name or '(unnamed)'}")


@cli.command()
@click.argument("text")
@click.option("--chat-id", help="Append to an existing chat")
@endpoint_options
def send(text: str, chat_id: str | None, mode: str, engine_url: str, relay_url: str, model: str):
    """Send a single message and stream the reply to stdout."""
    from .transport import SendState

    if not text.strip():
        raise click.UsageError("Message is empty.")

    store = ConversationStore(SQLITE_PATH)
    chat_id = chat_id or new_chat_id()

    async def run():
        async with _transport(store, mode, engine_url, relay_url, model) as transport:
            return await _send_turn(transport, chat_id, text)

    try:
        result = asyncio.run(run())
    finally:
        store.close()

    if result.state is SendState.FAILED:
        sys.exit(1)


@cli.command()
@endpoint_options
def models(mode: str, engine_url: str, relay_url: str, model: str):
    """List the models available to chat with."""

    async def fetch():
        # Listing models never touches the chat history
        async with _transport(None, mode, engine_url, relay_url, model) as transport:
            return await transport.list_models()

    try:
        names = asyncio.run(fetch())
    except TransportError as e:
        raise click.ClickException(str(e)) from e

    if not names:
        click.echo("No models available.")
        return
    for name in names:
        marker = "*" if name == model else " "
        click.echo(f"{marker} {name}")


@cli.command("history")
def history_cmd():
    """List saved chats, newest first."""
    store = ConversationStore(SQLITE_PATH)
    chats = store.list()
    store.close()

    if not chats:
        click.echo("No chats yet. Start one with: llmchat chat")
        return

    for c in chats:
        name = c.name or click.style("(unnamed)", dim=True)
        click.echo(f"{c.id}  {name}  ({len(c.messages)} msgs)")


def _print_messages(messages: list[Message], show_thoughts: bool):
    for msg in messages:
        if msg.role == "user":
            click.echo(click.style("You: ", bold=True) + msg.content)
            continue

        click.echo(click.style("Bot: ", bold=True), nl=False)
        for kind, text in split_thoughts(msg.content):
            if kind == "text":
                click.echo(text.strip())
            elif show_thoughts:
                click.echo(click.style(text or "No thought needed", dim=True))
            else:
                click.echo(click.style("[thought hidden]", dim=True))
        click.echo()


@cli.command()
@click.argument("chat_id")
@click.option("--thoughts", is_flag=True, help="Show the model's thought sections")
def show(chat_id: str, thoughts: bool):
    """Print a saved chat."""
    store = ConversationStore(SQLITE_PATH)
    c = store.get(chat_id)
    store.close()

    if c is None:
        raise click.ClickException(f"Chat not found: {chat_id}")

    click.echo(click.style(c.name or c.id, bold=True))
    click.echo()
    _print_messages(c.messages, show_thoughts=thoughts)


@cli.command()
@click.argument("chat_id")
def delete(chat_id: str):
    """Delete a saved chat."""
    store = ConversationStore(SQLITE_PATH)
    try:
        if not store.exists(chat_id):
            raise click.ClickException(f"Chat not found: {chat_id}")
        store.delete(chat_id)
    finally:
        store.close()
    click.echo(f"Deleted chat {chat_id}")


@cli.command("export")
@click.argument("path", type=click.Path(dir_okay=False, writable=True))
def export_cmd(path: str):
    """Export the chat history to a JSON file."""
    from .history import export_history

    store = ConversationStore(SQLITE_PATH)
    try:
        count = export_history(store, path)
    finally:
        store.close()
    click.echo(f"Exported {count} chats to {path}")


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--force", is_flag=True, help="Overwrite chats that already exist")
def import_cmd(path: str, force: bool):
    """Import chats from a JSON history export."""
    from .history import import_history

    store = ConversationStore(SQLITE_PATH)
    try:
        summary = import_history(store, path, force=force)
    finally:
        store.close()

    click.echo(click.style("Import complete!", fg="green", bold=True))
    click.echo(f"  Imported: {summary['imported']} chats ({summary['messages']} messages)")
    if summary["skipped"]:
        click.echo(f"  Skipped:  {summary['skipped']} (already present, use --force to overwrite)")


@cli.command()
@click.option("--host", default=RELAY_HOST, show_default=True)
@click.option("--port", default=RELAY_PORT, show_default=True, type=int)
@click.option("--engine-url", default=ENGINE_URL, show_default=True)
@click.option("--model", default=DEFAULT_MODEL, show_default=True, help="Model used when a request names none")
def relay(host: str, port: int, engine_url: str, model: str):
    """Run the relay server in front of the engine."""
    from .relay import run

    logging.getLogger().setLevel(min(logging.getLogger().level, logging.INFO))
    run(host, port, engine_url=engine_url, default_model=model)


@cli.command()
@click.confirmation_option(prompt="This will delete all saved chats. Are you sure?")
def reset():
    """Delete all saved chats."""
    if SQLITE_PATH.exists():
        store = ConversationStore(SQLITE_PATH)
        store.clear()
        store.close()
        click.echo(f"Cleared chat history in {DATA_DIR}")
    else:
        click.echo("No chats to delete.")
