"""Tests for SQLiteChatStore."""

import pytest

from docchat.chat.history import SQLiteChatStore


@pytest.fixture
def chat_store(tmp_path):
    """Create a temporary chat database for testing."""
    store = SQLiteChatStore(tmp_path / "chats.db")
    yield store
    store.close()


class TestSQLiteChatStore:
    """Test SQLiteChatStore."""

    def test_init_creates_database(self, tmp_path):
        db_path = tmp_path / "new.db"
        assert not db_path.exists()

        store = SQLiteChatStore(db_path)

        assert db_path.exists()
        assert store.db_path == db_path
        store.close()

    def test_schema_creation(self, chat_store):
        conn = chat_store.connection
        for table in ("chats", "messages"):
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
            )
            assert cursor.fetchone() is not None

    def test_create_and_get_chat(self, chat_store):
        chat_id = chat_store.create_chat("gemma3:latest")

        chat = chat_store.get_chat(chat_id)

        assert chat["chat_id"] == chat_id
        assert chat["model"] == "gemma3:latest"
        assert chat_store.chat_exists(chat_id)

    def test_unknown_chat(self, chat_store):
        assert chat_store.get_chat("missing") is None
        assert chat_store.chat_exists("missing") is False

    def test_save_and_load_history(self, chat_store):
        """History comes back as chronological user/assistant pairs."""
        chat_id = chat_store.create_chat("m")
        assert chat_store.save_turn(chat_id, "first question", "first answer")
        assert chat_store.save_turn(chat_id, "second question", "second answer")

        history = chat_store.load_history(chat_id)

        assert [(item.role, item.content) for item in history] == [
            ("user", "first question"),
            ("assistant", "first answer"),
            ("user", "second question"),
            ("assistant", "second answer"),
        ]

    def test_load_history_limit_keeps_latest(self, chat_store):
        chat_id = chat_store.create_chat("m")
        for index in range(5):
            chat_store.save_turn(chat_id, f"q{index}", f"a{index}")

        history = chat_store.load_history(chat_id, limit=2)

        assert [item.content for item in history] == ["q3", "a3", "q4", "a4"]

    def test_save_turn_unknown_chat(self, chat_store):
        assert chat_store.save_turn("missing", "q", "a") is False

    def test_list_chats(self, chat_store):
        first = chat_store.create_chat("m1")
        second = chat_store.create_chat("m2")
        chat_store.save_turn(first, "q", "a")

        chats = {row["chat_id"]: row for row in chat_store.list_chats()}

        assert chats[first]["turn_count"] == 1
        assert chats[second]["turn_count"] == 0
        assert chats[second]["model"] == "m2"

    def test_delete_chat(self, chat_store):
        chat_id = chat_store.create_chat("m")
        chat_store.save_turn(chat_id, "q", "a")

        assert chat_store.delete_chat(chat_id) is True
        assert chat_store.chat_exists(chat_id) is False
        assert chat_store.load_history(chat_id) == []
        assert chat_store.delete_chat(chat_id) is False

    def test_transaction_rollback(self, chat_store):
        chat_id = chat_store.create_chat("m")

        with pytest.raises(RuntimeError):
            with chat_store.transaction() as conn:
                conn.execute("DELETE FROM chats")
                raise RuntimeError("abort")

        assert chat_store.chat_exists(chat_id)
