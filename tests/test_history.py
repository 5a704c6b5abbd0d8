"""
Tests for llmchat/history.py

Covers:
- Export to a JSON array and import back into a fresh store
- Skipping existing chats unless forced
- Rejection of files that are not history exports
"""

import json

import click
import pytest

from llmchat.history import export_history, import_history
from llmchat.models import Conversation, Message
from llmchat.storage import ConversationStore


@pytest.fixture
def filled_store(store):
    store.upsert(
        Conversation(
            id="1",
            name="First",
            messages=[Message(role="user", content="hi"), Message(role="bot", content="hello")],
        )
    )
    store.upsert(Conversation(id="2", name="Second", messages=[Message(role="user", content="yo")]))
    return store


class TestExport:
    def test_writes_json_array(self, filled_store, tmp_path):
        path = tmp_path / "history.json"

        assert export_history(filled_store, path) == 2

        data = json.loads(path.read_text(encoding="utf-8"))
        assert [c["id"] for c in data] == ["2", "1"]
        assert data[1]["messages"] == [
            {"role": "user", "content": "hi"},
            {"role": "bot", "content": "hello"},
        ]

    def test_empty_store(self, store, tmp_path):
        path = tmp_path / "history.json"
        assert export_history(store, path) == 0
        assert json.loads(path.read_text()) == []


class TestImport:
    def test_into_fresh_store(self, filled_store, tmp_path):
        path = tmp_path / "history.json"
        export_history(filled_store, path)

        target = ConversationStore(tmp_path / "other.db")
        summary = import_history(target, path)

        assert summary == {"imported": 2, "skipped": 0, "messages": 3}
        assert [c.id for c in target.list()] == ["2", "1"]
        assert target.get("1") == filled_store.get("1")
        target.close()

    def test_existing_chats_are_skipped(self, filled_store, tmp_path):
        path = tmp_path / "history.json"
        export_history(filled_store, path)
        filled_store.upsert(Conversation(id="1", name="Changed"))

        summary = import_history(filled_store, path)

        assert summary["skipped"] == 2
        assert filled_store.get("1").name == "Changed"

    def test_force_overwrites(self, filled_store, tmp_path):
        path = tmp_path / "history.json"
        export_history(filled_store, path)
        filled_store.upsert(Conversation(id="1", name="Changed"))

        summary = import_history(filled_store, path, force=True)

        assert summary["imported"] == 2
        assert filled_store.get("1").name == "First"

    def test_browser_export_without_loading_flags(self, store, tmp_path):
        path = tmp_path / "history.json"
        path.write_text(
            json.dumps([{"id": "1700000000000", "name": "", "messages": [{"role": "user", "content": "q"}]}])
        )

        assert import_history(store, path)["imported"] == 1
        assert store.get("1700000000000").messages[0].content == "q"

    def test_missing_file(self, store, tmp_path):
        with pytest.raises(click.ClickException, match="File not found"):
            import_history(store, tmp_path / "nope.json")

    def test_not_a_history_file(self, store, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"chats": []}))

        with pytest.raises(click.ClickException, match="not a chat history export"):
            import_history(store, path)
