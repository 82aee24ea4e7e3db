"""Assembly of the message list sent to the chat endpoint."""

from __future__ import annotations

from typing import List, Optional, Sequence

from docchat.chat.budget import CharacterTokenEstimator, TokenEstimator
from docchat.models import ConversationMessage, RetrievedChunk

CONTEXT_HEADER = "# Relevant Context from Library Documents"
CONTEXT_INSTRUCTIONS = (
    "**Instructions:**\n"
    "- Use the above context to inform your response when relevant\n"
    '- Cite specific chunks when using information (e.g., "According to Chunk 2...")\n'
    "- If the context doesn't contain relevant information, rely on your general knowledge"
)


def _describe_chunk(chunk: RetrievedChunk) -> str:
    parts = []
    title = chunk.metadata.get("title")
    if title:
        parts.append(f"Source: {title}")
    if chunk.metadata.get("page"):
        parts.append(f"Page {chunk.metadata['page']}")
    if chunk.metadata.get("section"):
        parts.append(f"Section: {chunk.metadata['section']}")
    return f" ({', '.join(parts)})" if parts else ""


def format_context(chunks: Sequence[RetrievedChunk]) -> str:
    """Render retrieved chunks as a markdown block for the system prompt."""
    if not chunks:
        return ""

    sections = []
    for number, chunk in enumerate(chunks, start=1):
        relevance = round(chunk.score * 100)
        sections.append(
            f"### Document Chunk {number}{_describe_chunk(chunk)}\n"
            f"**Relevance:** {relevance}%\n\n"
            f"{chunk.text}"
        )

    body = "\n\n---\n\n".join(sections)
    return (
        f"{CONTEXT_HEADER}\n\n"
        f"The following {len(chunks)} chunks have been retrieved from your selected "
        f"documents (ordered by relevance):\n\n"
        f"{body}\n\n"
        f"{CONTEXT_INSTRUCTIONS}"
    )


class ConversationAssembler:
    """Orders system prompt, context, history and the new message.

    The result is always ``[system, *history, user]``. History is trusted to
    be chronological and is never reordered or deduplicated. When
    ``max_history_tokens`` is set, the oldest messages that do not fit are
    left out instead.
    """

    def __init__(
        self,
        estimator: Optional[TokenEstimator] = None,
        *,
        max_history_tokens: Optional[int] = None,
    ) -> None:
        self.estimator = estimator or CharacterTokenEstimator()
        self.max_history_tokens = max_history_tokens

    def system_message(
        self, system_prompt: str, retrieved_context: Sequence[RetrievedChunk] = ()
    ) -> ConversationMessage:
        context = format_context(retrieved_context)
        content = f"{system_prompt}\n\n{context}" if context else system_prompt
        return ConversationMessage(role="system", content=content)

    def assemble(
        self,
        history: Sequence[ConversationMessage],
        new_user_message: str,
        system_prompt: str,
        retrieved_context: Sequence[RetrievedChunk] = (),
    ) -> List[ConversationMessage]:
        system = self.system_message(system_prompt, retrieved_context)
        user = ConversationMessage(role="user", content=new_user_message)

        if self.max_history_tokens is None:
            kept = list(history)
        else:
            used = self.estimator.estimate(system.content) + self.estimator.estimate(
                new_user_message
            )
            kept = self._fit_history(history, self.max_history_tokens - used)

        return [system, *kept, user]

    def _fit_history(
        self, history: Sequence[ConversationMessage], budget: int
    ) -> List[ConversationMessage]:
        kept: List[ConversationMessage] = []
        for message in reversed(history):
            if not message.content.strip():
                continue
            cost = self.estimator.estimate(message.content)
            if cost > budget:
                break
            budget -= cost
            kept.append(message)
        kept.reverse()
        return kept
