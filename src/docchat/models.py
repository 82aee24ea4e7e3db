"""Core DocChat data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

from docchat.exceptions import ValidationError

Role = Literal["system", "user", "assistant"]
ROLES = ("system", "user", "assistant")

NANOS_PER_MILLI = 1_000_000


def _nanos_to_millis(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value) / NANOS_PER_MILLI


@dataclass(slots=True, frozen=True)
class StreamMetrics:
    """Completion statistics reported on the final line of a stream."""

    total_duration_ms: Optional[float] = None
    load_duration_ms: Optional[float] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration_ms: Optional[float] = None
    eval_count: Optional[int] = None
    eval_duration_ms: Optional[float] = None
    done_reason: Optional[str] = None

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "StreamMetrics":
        """Build metrics from a raw final line, converting nanoseconds to ms."""
        return cls(
            total_duration_ms=_nanos_to_millis(data.get("total_duration")),
            load_duration_ms=_nanos_to_millis(data.get("load_duration")),
            prompt_eval_count=data.get("prompt_eval_count"),
            prompt_eval_duration_ms=_nanos_to_millis(data.get("prompt_eval_duration")),
            eval_count=data.get("eval_count"),
            eval_duration_ms=_nanos_to_millis(data.get("eval_duration")),
            done_reason=data.get("done_reason"),
        )

    @property
    def tokens_per_second(self) -> Optional[float]:
        if not self.eval_count or not self.eval_duration_ms:
            return None
        return self.eval_count / (self.eval_duration_ms / 1000)


@dataclass(slots=True, frozen=True)
class StreamEvent:
    """One decoded line of the streaming response."""

    delta_text: str
    is_final: bool = False
    metrics: Optional[StreamMetrics] = None


@dataclass(slots=True, frozen=True)
class StreamUpdate:
    """Render state published after each decoded event."""

    text: str
    delta: str = ""
    pending: str = ""
    done: bool = False
    metrics: Optional[StreamMetrics] = None


@dataclass(slots=True)
class ConversationMessage:
    """A single prompt entry; list order is prompt order."""

    role: Role
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValidationError(f"Unknown message role: {self.role!r}")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True, frozen=True)
class RetrievedChunk:
    """Chunk of library text returned by retrieval."""

    text: str
    source_id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class BudgetPlan:
    max_chunks: int
    available_token_budget: float


@dataclass(slots=True, frozen=True)
class Turn:
    """A user message paired with the assistant response it produced."""

    user_message: str
    assistant_message: str
