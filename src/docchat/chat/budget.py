"""Token budgeting for retrieved context.

Before a request is sent we estimate how much of the model's context window
the system prompt, the conversation so far and the new message will use, and
translate what is left into a number of library chunks to retrieve.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional, Protocol

from docchat.models import BudgetPlan, ConversationMessage

LOGGER = logging.getLogger(__name__)

RESERVE_FRACTION = 0.7
AVG_TOKENS_PER_CHUNK = 500
MIN_CHUNKS = 3
MAX_CHUNKS = 10


class TokenEstimator(Protocol):
    def estimate(self, text: Optional[str]) -> int: ...


class CharacterTokenEstimator:
    """Approximates tokens as one per ``chars_per_token`` characters.

    Roughly right for English text; actual tokenisation varies by model.
    Deterministic and monotonic in text length, which is all the budgeter
    relies on.
    """

    def __init__(self, chars_per_token: int = 4) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: Optional[str]) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


class ContextBudgeter:
    """Computes how many retrieved chunks fit alongside the prompt."""

    def __init__(
        self,
        estimator: Optional[TokenEstimator] = None,
        *,
        reserve_fraction: float = RESERVE_FRACTION,
        avg_tokens_per_chunk: int = AVG_TOKENS_PER_CHUNK,
        min_chunks: int = MIN_CHUNKS,
        max_chunks: int = MAX_CHUNKS,
    ) -> None:
        if not 0 < reserve_fraction <= 1:
            raise ValueError("reserve_fraction must be in (0, 1]")
        if avg_tokens_per_chunk <= 0:
            raise ValueError("avg_tokens_per_chunk must be positive")
        if min_chunks < 0 or min_chunks > max_chunks:
            raise ValueError("min_chunks must be between 0 and max_chunks")
        self.estimator = estimator or CharacterTokenEstimator()
        self.reserve_fraction = reserve_fraction
        self.avg_tokens_per_chunk = avg_tokens_per_chunk
        self.min_chunks = min_chunks
        self.max_chunks = max_chunks

    def estimate_messages(self, messages: Iterable[ConversationMessage]) -> int:
        return sum(self.estimator.estimate(message.content) for message in messages)

    def plan(
        self,
        max_window_tokens: int,
        system_prompt: str,
        history: Iterable[ConversationMessage],
        new_user_message: str,
    ) -> BudgetPlan:
        return self.plan_tokens(
            max_window_tokens,
            system_tokens=self.estimator.estimate(system_prompt),
            conversation_tokens=self.estimate_messages(history),
            message_tokens=self.estimator.estimate(new_user_message),
        )

    def plan_tokens(
        self,
        max_window_tokens: int,
        *,
        system_tokens: int,
        conversation_tokens: int,
        message_tokens: int,
    ) -> BudgetPlan:
        available = (
            max_window_tokens * self.reserve_fraction
            - system_tokens
            - conversation_tokens
            - message_tokens
        )
        fitting = math.floor(available / self.avg_tokens_per_chunk)
        max_chunks = max(self.min_chunks, min(self.max_chunks, fitting))

        # Still retrieve min_chunks; the prompt may then overflow the window.
        if available <= 0:
            LOGGER.warning(
                "Prompt exceeds reserved context (%.1f tokens available); "
                "retrieving %d chunks anyway",
                available,
                max_chunks,
            )
        LOGGER.debug(
            "Budget: window=%d system=%d conversation=%d message=%d -> %d chunks",
            max_window_tokens,
            system_tokens,
            conversation_tokens,
            message_tokens,
            max_chunks,
        )
        return BudgetPlan(max_chunks=max_chunks, available_token_budget=available)
