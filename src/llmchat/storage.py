"""SQLite storage for chat history."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Protocol

from .models import Conversation, Message


class ChatStore(Protocol):
    """What the transport needs from a chat history store."""

    def get(self, chat_id: str) -> Conversation | None: ...

    def upsert(self, chat: Conversation) -> None: ...

    def list(self) -> list[Conversation]: ...

    def delete(self, chat_id: str) -> None: ...


class ConversationStore:
    """SQLite-backed storage for conversations and their messages."""

    def __init__(self, db_path: Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _migrate(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                create_time REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                message_index INTEGER NOT NULL,
                FOREIGN KEY (conversation_id) REFERENCES conversations(id)
                    ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conv
                ON messages(conversation_id);
        """)
        self.conn.commit()

    def exists(self, chat_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM conversations WHERE id = ?", (chat_id,)
        ).fetchone()
        return row is not None

    def upsert(self, chat: Conversation) -> None:
        """Insert or replace a conversation and its messages.

        A conversation keeps its original creation time, so list order is
        stable across updates.
        """
        self.conn.execute(
            """INSERT INTO conversations (id, name, create_time) VALUES (?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET name = excluded.name""",
            (chat.id, chat.name, time.time()),
        )
        self.conn.execute("DELETE FROM messages WHERE conversation_id = ?", (chat.id,))

        for idx, msg in enumerate(chat.messages):
            self.conn.execute(
                """INSERT INTO messages (conversation_id, role, content, message_index)
                   VALUES (?, ?, ?, ?)""",
                (chat.id, msg.role, msg.content, idx),
            )

        self.conn.commit()

    def get(self, chat_id: str) -> Conversation | None:
        """Get a conversation with all its messages."""
        row = self.conn.execute(
            "SELECT id, name FROM conversations WHERE id = ?", (chat_id,)
        ).fetchone()
        if not row:
            return None
        return self._load(row)

    def list(self) -> list[Conversation]:
        """All conversations, most recently created first."""
        rows = self.conn.execute(
            "SELECT id, name FROM conversations ORDER BY create_time DESC, rowid DESC"
        ).fetchall()
        return [self._load(r) for r in rows]

    def delete(self, chat_id: str) -> None:
        self.conn.execute("DELETE FROM conversations WHERE id = ?", (chat_id,))
        self.conn.commit()

    def clear(self) -> None:
        self.conn.execute("DELETE FROM messages")
        self.conn.execute("DELETE FROM conversations")
        self.conn.commit()

    def close(self):
        self.conn.close()

    def _load(self, row: sqlite3.Row) -> Conversation:
        messages = self.conn.execute(
            """SELECT role, content FROM messages
               WHERE conversation_id = ? ORDER BY message_index""",
            (row["id"],),
        ).fetchall()
        # A message loading at write time is persisted as finished
        return Conversation(
            id=row["id"],
            name=row["name"],
            messages=[Message(role=m["role"], content=m["content"]) for m in messages],
        )
