"""Shared fakes for the chat pipeline tests."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

import pytest

from docchat.exceptions import TransportError


def wire_line(content: str, done: bool = False, **extra: Any) -> bytes:
    data: Dict[str, Any] = {"message": {"role": "assistant", "content": content}, "done": done}
    data.update(extra)
    return (json.dumps(data, ensure_ascii=False) + "\n").encode("utf-8")


class FakeTransport:
    """Replays byte chunks and records the payloads it was asked to send."""

    def __init__(self, chunks: Sequence[bytes], *, error: Optional[str] = None) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.payloads: List[Dict[str, Any]] = []
        self.closed = False

    async def stream(self, payload: Dict[str, Any]):
        self.payloads.append(payload)
        try:
            for chunk in self.chunks:
                yield chunk
            if self.error is not None:
                raise TransportError(self.error)
        finally:
            self.closed = True


class FakeStore:
    """Persistence gateway that records every save."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: List[tuple] = []

    def save_turn(self, conversation_id: str, user_message: str, assistant_message: str) -> bool:
        self.calls.append((conversation_id, user_message, assistant_message))
        return self.result


@pytest.fixture
def hello_world_chunks() -> List[bytes]:
    return [
        wire_line("Hel"),
        wire_line("lo wor"),
        wire_line("ld.", done=True, done_reason="stop", total_duration=2_000_000_000, eval_count=3),
    ]


@pytest.fixture
def fake_transport_cls():
    return FakeTransport


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def line():
    return wire_line
