"""Tests for semantic search and library retrieval."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np

from docchat.index.search import (
    MAX_QUERY_WORDS,
    LibraryRetriever,
    SearchResult,
    Searcher,
    build_contextual_query,
)
from docchat.models import ConversationMessage


def _result(score: float, index: int = 0) -> SearchResult:
    return SearchResult(
        path=Path("/doc.pdf"),
        title="Doc",
        chunk_index=index,
        score=score,
        text=f"text {index}",
        metadata={"page": 1},
    )


class TestSearchResult:
    """Test SearchResult dataclass."""

    def test_to_chunk(self) -> None:
        """Should convert to a RetrievedChunk with a stable source id."""
        chunk = _result(0.85, index=5).to_chunk()

        assert chunk.source_id == "/doc.pdf#5"
        assert chunk.score == 0.85
        assert chunk.text == "text 5"
        assert chunk.metadata == {"title": "Doc", "chunk_index": 5, "page": 1}


class TestSearcher:
    """Test Searcher class."""

    def test_search_simple(self) -> None:
        """Should embed the query and decode store rows."""
        mock_encoder = MagicMock()
        mock_encoder.embed_query.return_value = np.array([0.1, 0.2, 0.3])

        mock_store = MagicMock()
        mock_store.search.return_value = [
            {
                "path": "/doc1.pdf",
                "title": "Document 1",
                "chunk_index": 0,
                "score": 0.95,
                "text": "Relevant text",
                "metadata": json.dumps({"page": 1}),
            }
        ]

        searcher = Searcher(mock_encoder, mock_store)
        results = searcher.search("test query", top_k=10, documents=["/doc1.pdf"])

        mock_encoder.embed_query.assert_called_once_with("test query")
        assert mock_store.search.call_args[1] == {"top_k": 10, "documents": ["/doc1.pdf"]}
        assert len(results) == 1
        assert results[0].path == Path("/doc1.pdf")
        assert results[0].metadata == {"page": 1}

    def test_search_without_metadata(self) -> None:
        mock_encoder = MagicMock()
        mock_encoder.embed_query.return_value = np.array([0.1])
        mock_store = MagicMock()
        mock_store.search.return_value = [
            {"path": "/d.pdf", "title": "D", "chunk_index": 0, "score": 0.5, "text": "t", "metadata": None}
        ]

        results = Searcher(mock_encoder, mock_store).search("q")

        assert results[0].metadata == {}


class TestBuildContextualQuery:
    """Test build_contextual_query."""

    def test_no_history(self) -> None:
        assert build_contextual_query("what is rag", []) == "what is rag"

    def test_weights_message_and_recent_user_turns(self) -> None:
        history = [
            ConversationMessage(role="user", content="one"),
            ConversationMessage(role="assistant", content="ignored"),
            ConversationMessage(role="user", content="two"),
            ConversationMessage(role="user", content="three"),
        ]

        assert build_contextual_query("now", history) == "now now two three"

    def test_capped_to_last_words(self) -> None:
        history = [ConversationMessage(role="user", content="old " * 600)]

        query = build_contextual_query("newest", history)

        assert len(query.split(" ")) == MAX_QUERY_WORDS


class TestLibraryRetriever:
    """Test LibraryRetriever."""

    def test_filters_by_threshold(self) -> None:
        searcher = MagicMock()
        searcher.search.return_value = [_result(0.9, 0), _result(0.31, 1), _result(0.3, 2), _result(0.1, 3)]
        retriever = LibraryRetriever(searcher, documents=["/doc.pdf"])

        chunks = retriever.get_chunks("question", [], 5)

        assert [chunk.source_id for chunk in chunks] == ["/doc.pdf#0", "/doc.pdf#1"]
        searcher.search.assert_called_once_with("question", top_k=5, documents=["/doc.pdf"])

    def test_respects_limit(self) -> None:
        searcher = MagicMock()
        searcher.search.return_value = [_result(0.9, index) for index in range(6)]

        chunks = LibraryRetriever(searcher).get_chunks("q", [], 3)

        assert len(chunks) == 3

    def test_nothing_relevant(self) -> None:
        searcher = MagicMock()
        searcher.search.return_value = [_result(0.2)]

        assert LibraryRetriever(searcher).get_chunks("q", [], 3) == []

    def test_zero_limit_skips_search(self) -> None:
        searcher = MagicMock()

        assert LibraryRetriever(searcher).get_chunks("q", [], 0) == []
        searcher.search.assert_not_called()
