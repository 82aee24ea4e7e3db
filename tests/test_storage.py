"""Tests for SQLiteLibraryStore."""

import json

import numpy as np
import pytest

from docchat.index.storage import SQLiteLibraryStore


def _insert_document(store, path, title, embeddings):
    conn = store.connection
    cursor = conn.execute(
        "INSERT INTO documents(path, title, sha256, mtime, size) VALUES (?, ?, ?, ?, ?)",
        (path, title, "hash", 0.0, 100),
    )
    document_id = cursor.lastrowid
    for index, vector in enumerate(embeddings):
        conn.execute(
            """
            INSERT INTO chunks(document_id, chunk_index, text, metadata, embedding)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                document_id,
                index,
                f"{title} chunk {index}",
                json.dumps({"page": index + 1}),
                np.asarray(vector, dtype="float32").tobytes(),
            ),
        )
    conn.commit()


@pytest.fixture
def library(tmp_path):
    """Create a library with two small documents."""
    store = SQLiteLibraryStore(tmp_path / "library.db")
    _insert_document(store, "/docs/a.pdf", "Alpha", [[1.0, 0.0], [0.6, 0.8]])
    _insert_document(store, "/docs/b.pdf", "Beta", [[0.0, 1.0]])
    yield store
    store.close()


class TestSQLiteLibraryStore:
    """Test SQLiteLibraryStore."""

    def test_schema_creation(self, tmp_path):
        store = SQLiteLibraryStore(tmp_path / "empty.db")
        conn = store.connection
        for table in ("documents", "chunks"):
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
            )
            assert cursor.fetchone() is not None
        store.close()

    def test_search_orders_by_score(self, library):
        results = library.search(np.array([1.0, 0.0]), top_k=3)

        assert [result["text"] for result in results] == [
            "Alpha chunk 0",
            "Alpha chunk 1",
            "Beta chunk 0",
        ]
        assert results[0]["score"] == pytest.approx(1.0)
        assert results[1]["score"] == pytest.approx(0.6)

    def test_search_top_k(self, library):
        results = library.search(np.array([0.0, 1.0]), top_k=1)

        assert len(results) == 1
        assert results[0]["path"] == "/docs/b.pdf"

    def test_search_filtered_by_document(self, library):
        results = library.search(np.array([0.0, 1.0]), top_k=5, documents=["/docs/a.pdf"])

        assert {result["path"] for result in results} == {"/docs/a.pdf"}
        assert results[0]["chunk_index"] == 1
        assert json.loads(results[0]["metadata"]) == {"page": 2}

    def test_search_empty_library(self, tmp_path):
        store = SQLiteLibraryStore(tmp_path / "empty.db")

        assert store.search(np.array([1.0, 0.0])) == []
        store.close()

    def test_search_non_positive_top_k(self, library):
        assert library.search(np.array([1.0, 0.0]), top_k=0) == []

    def test_list_documents(self, library):
        documents = {row["path"]: row for row in library.list_documents()}

        assert documents["/docs/a.pdf"]["chunk_count"] == 2
        assert documents["/docs/b.pdf"]["title"] == "Beta"
