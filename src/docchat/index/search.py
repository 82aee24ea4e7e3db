"""Semantic search over the library and the retrieval service built on it."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from docchat.embedding.encoder import QueryEncoder
from docchat.index.storage import SQLiteLibraryStore
from docchat.models import ConversationMessage, RetrievedChunk

LOGGER = logging.getLogger(__name__)

MAX_QUERY_WORDS = 500


@dataclass(slots=True)
class SearchResult:
    path: Path
    title: str
    chunk_index: int
    score: float
    text: str
    metadata: dict

    def to_chunk(self) -> RetrievedChunk:
        metadata = {"title": self.title, "chunk_index": self.chunk_index, **self.metadata}
        return RetrievedChunk(
            text=self.text,
            source_id=f"{self.path}#{self.chunk_index}",
            score=self.score,
            metadata=metadata,
        )


class Searcher:
    """High-level API to query the library store."""

    def __init__(self, encoder: QueryEncoder, store: SQLiteLibraryStore) -> None:
        self.encoder = encoder
        self.store = store

    def search(
        self,
        query: str,
        *,
        top_k: int = 10,
        documents: Optional[Sequence[str]] = None,
    ) -> List[SearchResult]:
        embedding = self.encoder.embed_query(query)
        rows = self.store.search(embedding, top_k=top_k, documents=documents)
        results: List[SearchResult] = []
        for row in rows:
            metadata = json.loads(row["metadata"]) if row.get("metadata") else {}
            results.append(
                SearchResult(
                    path=Path(row["path"]),
                    title=row["title"],
                    chunk_index=row["chunk_index"],
                    score=float(row["score"]),
                    text=row["text"],
                    metadata=metadata,
                )
            )
        return results


def build_contextual_query(message: str, history: Sequence[ConversationMessage]) -> str:
    """Weight the current message over the last two user messages.

    The current message appears twice so it dominates the embedding; the
    query is capped at the last MAX_QUERY_WORDS words.
    """
    recent = [item.content for item in history if item.role == "user"][-2:]
    query = f"{message} {message} {' '.join(recent)}" if recent else message
    return " ".join(query.split(" ")[-MAX_QUERY_WORDS:])


class LibraryRetriever:
    """Retrieval service over selected library documents."""

    def __init__(
        self,
        searcher: Searcher,
        *,
        documents: Optional[Sequence[str]] = None,
        similarity_threshold: float = 0.3,
    ) -> None:
        self.searcher = searcher
        self.documents = list(documents) if documents else None
        self.similarity_threshold = similarity_threshold

    def get_chunks(
        self,
        query: str,
        conversation_context: Sequence[ConversationMessage],
        limit: int,
    ) -> List[RetrievedChunk]:
        if limit <= 0:
            return []
        started = time.perf_counter()
        contextual_query = build_contextual_query(query, conversation_context)
        results = self.searcher.search(contextual_query, top_k=limit, documents=self.documents)
        relevant = [result for result in results if result.score > self.similarity_threshold]

        if not relevant:
            LOGGER.info("No chunks above similarity threshold %.2f", self.similarity_threshold)
            return []

        elapsed_ms = (time.perf_counter() - started) * 1000
        average = sum(result.score for result in relevant) / len(relevant)
        LOGGER.info(
            "Retrieval: %.0fms | Chunks: %d/%d | Avg similarity: %.3f",
            elapsed_ms,
            len(relevant),
            len(results),
            average,
        )
        return [result.to_chunk() for result in relevant[:limit]]
