"""SQLite persistence for chats and their finished turns."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from docchat.models import ConversationMessage

LOGGER = logging.getLogger(__name__)


class SQLiteChatStore:
    """Stores chats and one row per completed (user, assistant) turn."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chats (
                    id INTEGER PRIMARY KEY,
                    uuid TEXT NOT NULL UNIQUE,
                    model TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY,
                    chat_id INTEGER NOT NULL,
                    user_message TEXT,
                    assistant_message TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(chat_id) REFERENCES chats(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_messages_chat_id
                    ON messages(chat_id)
                """
            )

    def create_chat(self, model: str) -> str:
        chat_id = str(uuid.uuid4())
        with self.transaction() as conn:
            conn.execute("INSERT INTO chats(uuid, model) VALUES (?, ?)", (chat_id, model))
        return chat_id

    def _row_id(self, chat_id: str) -> Optional[int]:
        row = self._conn.execute("SELECT id FROM chats WHERE uuid = ?", (chat_id,)).fetchone()
        return row["id"] if row else None

    def chat_exists(self, chat_id: str) -> bool:
        return self._row_id(chat_id) is not None

    def get_chat(self, chat_id: str) -> Optional[dict]:
        row = self._conn.execute(
            "SELECT uuid AS chat_id, model, created_at, updated_at FROM chats WHERE uuid = ?",
            (chat_id,),
        ).fetchone()
        return dict(row) if row else None

    def list_chats(self) -> List[dict]:
        rows = self._conn.execute(
            """
            SELECT c.uuid AS chat_id, c.model AS model, c.created_at AS created_at,
                   c.updated_at AS updated_at, COUNT(m.id) AS turn_count
            FROM chats c
            LEFT JOIN messages m ON m.chat_id = c.id
            GROUP BY c.id
            ORDER BY c.updated_at DESC, c.id DESC
            """
        ).fetchall()
        return [dict(row) for row in rows]

    def load_history(self, chat_id: str, *, limit: int = 50) -> List[ConversationMessage]:
        """Most recent ``limit`` turns as chronological user/assistant messages."""
        rows = self._conn.execute(
            """
            SELECT m.user_message AS user_message, m.assistant_message AS assistant_message
            FROM messages m
            JOIN chats c ON c.id = m.chat_id
            WHERE c.uuid = ?
            ORDER BY m.id DESC
            LIMIT ?
            """,
            (chat_id, limit),
        ).fetchall()

        messages: List[ConversationMessage] = []
        for row in reversed(rows):
            messages.append(ConversationMessage(role="user", content=row["user_message"] or ""))
            messages.append(
                ConversationMessage(role="assistant", content=row["assistant_message"] or "")
            )
        return messages

    def save_turn(self, conversation_id: str, user_message: str, assistant_message: str) -> bool:
        """Store a finished turn. Returns False when the chat does not exist."""
        row_id = self._row_id(conversation_id)
        if row_id is None:
            LOGGER.warning("Cannot save turn: chat %s not found", conversation_id)
            return False
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO messages(chat_id, user_message, assistant_message)
                VALUES (?, ?, ?)
                """,
                (row_id, user_message, assistant_message),
            )
            conn.execute(
                "UPDATE chats SET updated_at = CURRENT_TIMESTAMP WHERE id = ?", (row_id,)
            )
        return True

    def delete_chat(self, chat_id: str) -> bool:
        with self.transaction() as conn:
            row_id = self._row_id(chat_id)
            if row_id is None:
                return False
            conn.execute("DELETE FROM messages WHERE chat_id = ?", (row_id,))
            conn.execute("DELETE FROM chats WHERE id = ?", (row_id,))
        return True
