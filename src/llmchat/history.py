"""Export and import chat history as a JSON array of conversations."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click
from pydantic import TypeAdapter, ValidationError

from .models import Conversation
from .storage import ConversationStore

logger = logging.getLogger(__name__)

_history_adapter = TypeAdapter(list[Conversation])


def export_history(store: ConversationStore, path: str | Path) -> int:
    """Write every stored conversation to ``path``, newest first.

    Returns the number of conversations written.
    """
    chats = store.list()
    data = [
        chat.model_dump(mode="json", exclude={"messages": {"__all__": {"loading"}}})
        for chat in chats
    ]
    Path(path).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Exported %d conversations to %s", len(chats), path)
    return len(chats)


def import_history(store: ConversationStore, path: str | Path, force: bool = False) -> dict:
    """Load conversations from a JSON export into the store.

    Conversations whose id already exists are skipped unless ``force``.
    Returns a summary dict with import statistics.
    """
    history_file = Path(path)
    if not history_file.exists():
        raise click.ClickException(f"File not found: {path}")

    try:
        chats = _history_adapter.validate_json(history_file.read_bytes())
    except ValidationError as e:
        raise click.ClickException(
            f"{path} is not a chat history export ({e.error_count()} problems found)."
        ) from e

    imported = 0
    skipped = 0
    messages = 0

    # Stored newest first; insert oldest first so the order survives
    for chat in reversed(chats):
        if not force and store.exists(chat.id):
            skipped += 1
            continue
        store.upsert(chat)
        imported += 1
        messages += len(chat.messages)

    logger.info("Imported %d conversations from %s (%d skipped)", imported, path, skipped)
    return {"imported": imported, "skipped": skipped, "messages": messages}
