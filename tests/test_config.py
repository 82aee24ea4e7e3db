"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from docchat.config import DEFAULT_CHAT_MODELS, DEFAULT_ENDPOINT, AppConfig, _get_data_dir


class TestGetDataDir:
    """Test _get_data_dir."""

    def test_frozen_uses_documents(self) -> None:
        with patch("docchat.config.sys") as mock_sys:
            mock_sys.frozen = True
            assert _get_data_dir() == Path.home() / "Documents" / "DocChat"

    def test_local_data_dir(self, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / "data").mkdir()

        assert _get_data_dir() == Path("data")


class TestAppConfig:
    """Test AppConfig defaults and overrides."""

    def test_defaults(self) -> None:
        config = AppConfig()

        assert config.endpoint == DEFAULT_ENDPOINT
        assert config.max_context == 16384
        assert config.reserve_fraction == 0.7
        assert config.similarity_threshold == 0.3
        assert config.chat_models == DEFAULT_CHAT_MODELS
        assert config.chat_db_path.name == "chats.db"
        assert config.library_db_path.name == "library.db"

    def test_from_env(self) -> None:
        env = {
            "DOCCHAT_OLLAMA_ENDPOINT": "http://gpu-box:11434/api/chat",
            "DOCCHAT_MAX_CONTEXT": "8192",
            "DOCCHAT_CHAT_DB": "/tmp/chats.db",
        }

        config = AppConfig.from_env(env)

        assert config.endpoint == "http://gpu-box:11434/api/chat"
        assert config.max_context == 8192
        assert config.chat_db_path == Path("/tmp/chats.db")

    def test_overrides_win(self) -> None:
        config = AppConfig.from_env({"DOCCHAT_MAX_CONTEXT": "8192"}, max_context=4096)

        assert config.max_context == 4096

    def test_none_overrides_ignored(self) -> None:
        config = AppConfig.from_env({}, endpoint=None, max_context=None)

        assert config.endpoint == DEFAULT_ENDPOINT
        assert config.max_context == 16384

    def test_resolve_path(self, tmp_path) -> None:
        config = AppConfig()

        assert config.resolve_path(Path("chats.db"), tmp_path) == tmp_path / "chats.db"
        assert config.resolve_path(tmp_path / "x.db", Path("/other")) == tmp_path / "x.db"
        assert config.resolve_path(Path("chats.db")) == Path("chats.db")

