"""Turn lifecycle for a single conversation.

A session owns the state of the turn currently in flight: it validates the
input, budgets and assembles the prompt, drives the stream decoder and hands
the finished turn to persistence exactly once.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, List, Optional, Protocol, Sequence, Set, Tuple

from docchat.chat.assembler import ConversationAssembler
from docchat.chat.budget import ContextBudgeter
from docchat.chat.transport import ModelOptions, OllamaTransport, build_chat_payload
from docchat.config import AppConfig
from docchat.exceptions import DocChatError, SessionStateError, ValidationError
from docchat.models import BudgetPlan, ConversationMessage, RetrievedChunk, StreamMetrics, StreamUpdate, Turn
from docchat.streaming.decoder import StreamDecoder
from docchat.utils.text import get_transformer

LOGGER = logging.getLogger(__name__)


class RetrievalService(Protocol):
    def get_chunks(
        self,
        query: str,
        conversation_context: Sequence[ConversationMessage],
        limit: int,
    ) -> List[RetrievedChunk]: ...


class PersistenceGateway(Protocol):
    def save_turn(self, conversation_id: str, user_message: str, assistant_message: str) -> bool: ...


class SessionState(str, enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    ERROR = "error"
    SAVING = "saving"


@dataclass(slots=True)
class PreparedTurn:
    user_message: str
    model: str
    messages: List[ConversationMessage]
    plan: BudgetPlan
    chunks: List[RetrievedChunk] = field(default_factory=list)


class ChatSession:
    """State machine for the turn in flight on one conversation.

    IDLE/ERROR -> STREAMING on ``stream_turn``; STREAMING -> SAVING when the
    stream finishes with text; STREAMING -> ERROR on transport failure;
    STREAMING -> IDLE on cancel or an empty response; SAVING -> IDLE once the
    turn is stored, or ERROR if storing fails.
    """

    def __init__(
        self,
        conversation_id: str,
        *,
        transport: OllamaTransport,
        persistence: PersistenceGateway,
        retriever: Optional[RetrievalService] = None,
        config: Optional[AppConfig] = None,
        budgeter: Optional[ContextBudgeter] = None,
        assembler: Optional[ConversationAssembler] = None,
        transformer: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.config = config or AppConfig()
        self.transport = transport
        self.persistence = persistence
        self.retriever = retriever
        self.budgeter = budgeter or ContextBudgeter(reserve_fraction=self.config.reserve_fraction)
        self.assembler = assembler or ConversationAssembler()
        self.transformer = transformer or get_transformer(self.config.transformer)

        self.state = SessionState.IDLE
        self.error: Optional[str] = None
        self.response = ""
        self.metrics: Optional[StreamMetrics] = None
        self.response_time_ms: Optional[float] = None
        self.last_turn: Optional[Turn] = None
        self._user_message: Optional[str] = None
        self._decoder: Optional[StreamDecoder] = None
        self._submitted: Set[Tuple[str, str]] = set()

    @property
    def is_streaming(self) -> bool:
        return self.state is SessionState.STREAMING

    def _fail(self, exc: DocChatError) -> None:
        self.state = SessionState.ERROR
        self.error = str(exc)

    def prepare(
        self,
        user_message: str,
        model: str,
        history: Sequence[ConversationMessage] = (),
        *,
        system_prompt: Optional[str] = None,
        retriever: Optional[RetrievalService] = None,
    ) -> PreparedTurn:
        """Validate input and build the message list for a new turn.

        ``retriever`` overrides the session default for this turn only.
        """
        if not user_message or not user_message.strip():
            exc = ValidationError("Please enter a message")
            self._fail(exc)
            raise exc
        if not model or not model.strip():
            exc = ValidationError("Please select a model")
            self._fail(exc)
            raise exc

        prompt = system_prompt or self.config.system_prompt
        plan = self.budgeter.plan(self.config.max_context, prompt, history, user_message)

        retriever = retriever or self.retriever
        chunks: List[RetrievedChunk] = []
        if retriever is not None:
            chunks = retriever.get_chunks(user_message, history, plan.max_chunks)
            chunks = chunks[: plan.max_chunks]

        messages = self.assembler.assemble(history, user_message, prompt, chunks)
        return PreparedTurn(
            user_message=user_message,
            model=model,
            messages=messages,
            plan=plan,
            chunks=chunks,
        )

    async def stream_turn(
        self,
        prepared: PreparedTurn,
        options: Optional[ModelOptions] = None,
    ) -> AsyncIterator[StreamUpdate]:
        """Stream the model's answer for a prepared turn.

        Closing the generator before it is exhausted cancels the turn: the
        buffered tail is dropped and nothing is persisted.
        """
        if self.state not in (SessionState.IDLE, SessionState.ERROR):
            raise SessionStateError("start a new turn", self.state.value)

        # Streaming again resubmits the turn.
        self._submitted.discard((self.conversation_id, prepared.user_message))
        self.state = SessionState.STREAMING
        self.error = None
        self.response = ""
        self.metrics = None
        self.response_time_ms = None
        self._user_message = prepared.user_message
        self._decoder = decoder = StreamDecoder(self.transformer)

        payload = build_chat_payload(prepared.model, prepared.messages, options)
        chunks = self.transport.stream(payload)
        failed = False
        try:
            async for update in decoder.adecode(chunks):
                self.response = update.text
                yield update
        except DocChatError as exc:
            failed = True
            self.response = decoder.text
            self._fail(exc)
            LOGGER.error("Stream failed for conversation %s: %s", self.conversation_id, exc)
            raise
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
            if not failed:
                if decoder.finished:
                    self._finish_stream(decoder)
                else:
                    self.cancel()

    def _finish_stream(self, decoder: StreamDecoder) -> None:
        self.metrics = decoder.metrics
        self.response_time_ms = decoder.elapsed_ms
        if self.response_time_ms is not None:
            LOGGER.info(
                "Response for %s finished in %.0f ms (%d chars)",
                self.conversation_id,
                self.response_time_ms,
                len(self.response),
            )
        self.complete_turn()

    def complete_turn(self) -> Optional[Turn]:
        """Persist the finished turn; safe to call more than once."""
        decoder = self._decoder
        if decoder is None or not decoder.finished or self._user_message is None:
            return None
        if self.state is not SessionState.STREAMING:
            return None

        if not self.response:
            LOGGER.info("Empty response for %s; nothing to save", self.conversation_id)
            self._clear_turn()
            self.state = SessionState.IDLE
            return None

        key = (self.conversation_id, self._user_message)
        if key in self._submitted:
            self._clear_turn()
            self.state = SessionState.IDLE
            return None
        self._submitted.add(key)

        turn = Turn(user_message=self._user_message, assistant_message=self.response)
        self.state = SessionState.SAVING
        try:
            saved = self.persistence.save_turn(
                self.conversation_id, turn.user_message, turn.assistant_message
            )
        except Exception as exc:
            self.state = SessionState.ERROR
            self.error = f"Failed to save turn: {exc}"
            LOGGER.error("Failed to save turn for %s: %s", self.conversation_id, exc)
            raise
        if not saved:
            self.state = SessionState.ERROR
            self.error = f"Conversation {self.conversation_id} not found"
            return None

        self._submitted.discard(key)
        self._clear_turn()
        self.response = ""
        self.last_turn = turn
        self.state = SessionState.IDLE
        return turn

    def cancel(self) -> None:
        """Abandon the turn in flight without saving anything."""
        if self._decoder is not None:
            self._decoder.cancel()
        if self.state is SessionState.STREAMING:
            LOGGER.info("Turn cancelled for conversation %s", self.conversation_id)
            self.state = SessionState.IDLE
        self._clear_turn()

    def _clear_turn(self) -> None:
        self._user_message = None
        self._decoder = None

    def reset(self) -> None:
        if self.state in (SessionState.STREAMING, SessionState.SAVING):
            raise SessionStateError("reset", self.state.value)
        self.response = ""
        self.error = None
        self.metrics = None
        self.response_time_ms = None
        self.state = SessionState.IDLE
