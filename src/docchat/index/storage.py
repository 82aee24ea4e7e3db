"""Read access to the SQLite document library.

The library holds documents and their embedded chunks. It is filled by an
external indexer; DocChat only searches it.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np


class SQLiteLibraryStore:
    """Cosine search over float32 chunk embeddings stored in SQLite."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                id INTEGER PRIMARY KEY,
                path TEXT NOT NULL UNIQUE,
                title TEXT,
                sha256 TEXT NOT NULL,
                mtime REAL NOT NULL,
                size INTEGER NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY,
                document_id INTEGER NOT NULL,
                chunk_index INTEGER NOT NULL,
                text TEXT NOT NULL,
                metadata TEXT,
                embedding BLOB NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE
            )
            """
        )
        self._conn.commit()

    def list_documents(self) -> List[dict]:
        rows = self._conn.execute(
            """
            SELECT d.id AS id, d.path AS path, d.title AS title, COUNT(c.id) AS chunk_count
            FROM documents d
            LEFT JOIN chunks c ON c.document_id = d.id
            GROUP BY d.id
            ORDER BY d.title
            """
        ).fetchall()
        return [dict(row) for row in rows]

    def search(
        self,
        embedding: np.ndarray,
        *,
        top_k: int = 10,
        documents: Optional[Sequence[str]] = None,
    ) -> List[dict]:
        """Return the ``top_k`` chunks most similar to ``embedding``.

        ``documents`` restricts the search to the given document paths.
        """
        query = np.asarray(embedding, dtype="float32")
        sql = """
            SELECT
                d.path AS path,
                d.title AS title,
                c.chunk_index AS chunk_index,
                c.text AS text,
                c.metadata AS metadata,
                c.embedding AS embedding
            FROM chunks c
            JOIN documents d ON d.id = c.document_id
        """
        params: tuple = ()
        if documents:
            placeholders = ", ".join("?" for _ in documents)
            sql += f" WHERE d.path IN ({placeholders})"
            params = tuple(str(path) for path in documents)
        rows = self._conn.execute(sql, params).fetchall()

        if not rows or top_k <= 0:
            return []

        embeddings = np.vstack([np.frombuffer(row["embedding"], dtype="float32") for row in rows])
        scores = embeddings @ query

        if top_k < len(scores):
            top_indices = np.argpartition(scores, -top_k)[-top_k:]
            top_indices = top_indices[np.argsort(scores[top_indices])[::-1]]
        else:
            top_indices = np.argsort(scores)[::-1]

        results: List[dict] = []
        for idx in top_indices:
            row = rows[idx]
            results.append(
                {
                    "path": row["path"],
                    "title": row["title"],
                    "chunk_index": row["chunk_index"],
                    "text": row["text"],
                    "metadata": row["metadata"],
                    "score": float(scores[idx]),
                }
            )
        return results
