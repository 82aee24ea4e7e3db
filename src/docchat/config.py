"""Application configuration defaults."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from docchat.embedding.encoder import DEFAULT_MODEL

DEFAULT_ENDPOINT = "http://localhost:11434/api/chat"
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


@dataclass(slots=True, frozen=True)
class ChatModel:
    friendly_name: str
    model_name: str


DEFAULT_CHAT_MODELS: Tuple[ChatModel, ...] = (
    ChatModel("Gemma 3 8B", "gemma3:latest"),
    ChatModel("DeepSeek R1 1.5B", "deepseek-r1:1.5b"),
    ChatModel("Llama 3.2 1B", "llama3.2:1b"),
    ChatModel("Gemma3 1B", "gemma3:1b"),
)


def _get_data_dir() -> Path:
    """Directory for the chat and library databases."""
    user_dir = Path.home() / "Documents" / "DocChat"

    if getattr(sys, "frozen", False):
        return user_dir

    # When running from source, prefer local data/ if it exists
    local_dir = Path("data")
    if local_dir.exists():
        return local_dir

    return user_dir


@dataclass(slots=True)
class AppConfig:
    endpoint: str = DEFAULT_ENDPOINT
    max_context: int = 16384
    reserve_fraction: float = 0.7
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    chat_models: Tuple[ChatModel, ...] = DEFAULT_CHAT_MODELS
    embedding_model: str = DEFAULT_MODEL
    chat_db_path: Path | None = None
    library_db_path: Path | None = None
    similarity_threshold: float = 0.3
    history_limit: int = 50
    request_timeout: float = 300.0
    transformer: str = "british"

    def __post_init__(self) -> None:
        if self.chat_db_path is None:
            self.chat_db_path = _get_data_dir() / "chats.db"
        if self.library_db_path is None:
            self.library_db_path = _get_data_dir() / "library.db"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "AppConfig":
        """Build a config from ``DOCCHAT_*`` environment variables.

        Explicit keyword overrides win over the environment; ``None``
        overrides are ignored so CLI options can be passed through as-is.
        """
        env = os.environ if environ is None else environ
        values: dict = {}
        if env.get("DOCCHAT_OLLAMA_ENDPOINT"):
            values["endpoint"] = env["DOCCHAT_OLLAMA_ENDPOINT"]
        if env.get("DOCCHAT_MAX_CONTEXT"):
            values["max_context"] = int(env["DOCCHAT_MAX_CONTEXT"])
        if env.get("DOCCHAT_CHAT_DB"):
            values["chat_db_path"] = Path(env["DOCCHAT_CHAT_DB"])
        if env.get("DOCCHAT_LIBRARY_DB"):
            values["library_db_path"] = Path(env["DOCCHAT_LIBRARY_DB"])
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def resolve_path(self, path: Path, base_dir: Path | None = None) -> Path:
        if Path(path).is_absolute() or base_dir is None:
            return Path(path)
        return base_dir / path
