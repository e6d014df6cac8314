"""SQLite storage for Memory Jar memories and their embeddings.

This module is the default MemoryStore backend. It keeps the Memory Jar
records and the embedding rows side by side so recall results can carry
the photo URL of each matched memory.

Database Schema:
    memories table:
        - id (TEXT, PK): Memory identifier
        - owner_id (TEXT): Owning account
        - image_url (TEXT): Uploaded photo URL
        - caption (TEXT): Caption (or monthly prompt)
        - month (INTEGER): 0-11
        - year (INTEGER)
        - prompt (TEXT): Monthly prompt the user answered
        - created_at (REAL): Unix epoch seconds

    memory_embeddings table:
        - id (TEXT, PK): Embedding record identifier
        - owner_id (TEXT): Owning account
        - source_memory_id (TEXT, UNIQUE): Upsert key, weak ref to memories.id
        - embedding (BLOB): float32 vector
        - dim (INTEGER): Vector length
        - content (TEXT): Caption the vector was derived from
        - tags (TEXT): JSON array
        - month, year (INTEGER)
        - created_at (REAL): First insertion, Unix epoch seconds

Features:
    - WAL mode for concurrent read/write access
    - Upsert by source_memory_id that keeps the original id and created_at
    - Owner-scoped cosine similarity search with numpy
    - All sqlite3 errors surface as StorageError
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

import numpy as np

from memory.store import StorageError, rank_matches, similarity_scores
from models.memory import Memory, MemoryEmbedding, SimilarMemory

logger = logging.getLogger(__name__)

# Embedding dimension (must match EMBEDDING_DIM)
EMBEDDING_DIM = 384


def _embedding_to_blob(embedding: Any) -> bytes:
    """Convert an embedding to a SQLite BLOB."""
    return np.asarray(embedding, dtype=np.float32).tobytes()


def _blob_to_embedding(blob: bytes) -> np.ndarray:
    """Convert a SQLite BLOB back to a numpy embedding."""
    return np.frombuffer(blob, dtype=np.float32)


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, timezone.utc)


@contextmanager
def _storage_errors(operation: str) -> Generator[None, None, None]:
    """Re-raise sqlite3 errors as StorageError."""
    try:
        yield
    except sqlite3.Error as e:
        raise StorageError(f"{operation} failed: {e}") from e


class Database:
    """SQLite store for memories and memory embeddings.

    Example:
        >>> with Database("memories.db") as db:
        ...     db.add_memory(memory)
        ...     db.put(record)
        ...     matches = db.match_memories(query, 0.7, 5, owner_id="u1")
    """

    SCHEMA = """
    -- Memory Jar records: one row per captioned monthly photo
    CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        image_url TEXT NOT NULL,
        caption TEXT,
        month INTEGER NOT NULL CHECK (month >= 0 AND month <= 11),
        year INTEGER NOT NULL,
        prompt TEXT,
        created_at REAL NOT NULL
    );

    -- Owner timeline queries
    CREATE INDEX IF NOT EXISTS idx_memories_owner_date ON memories(owner_id, year, month);

    -- Embeddings for recall, one per source memory
    CREATE TABLE IF NOT EXISTS memory_embeddings (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        source_memory_id TEXT NOT NULL UNIQUE,
        embedding BLOB NOT NULL,
        dim INTEGER NOT NULL,
        content TEXT NOT NULL,
        tags TEXT NOT NULL DEFAULT '[]',
        month INTEGER,
        year INTEGER,
        created_at REAL NOT NULL
    );

    -- Owner-scoped candidate selection
    CREATE INDEX IF NOT EXISTS idx_memory_embeddings_owner ON memory_embeddings(owner_id, year);
    """

    path: Path
    conn: sqlite3.Connection

    def __init__(self, path: Path | str, dim: int = EMBEDDING_DIM):
        """Open (and create if needed) the database.

        Args:
            path: Path to SQLite database file
            dim: Embedding dimensionality accepted by put()

        Raises:
            StorageError: If the database cannot be opened
        """
        self.path = Path(path)
        self.dim = dim
        with _storage_errors("open database"):
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.path))
            self.conn.row_factory = sqlite3.Row

            # WAL mode allows concurrent readers during writes
            self.conn.execute("PRAGMA journal_mode=WAL")
            self._init_schema()
        logger.debug("Database initialized | path=%s dim=%d", self.path, self.dim)

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()

    # === Memory Jar records ===

    def add_memory(self, memory: Memory) -> Memory:
        """Insert a Memory Jar record.

        Raises:
            StorageError: If the insert fails
        """
        with _storage_errors("save memory"):
            self.conn.execute(
                """
                INSERT INTO memories
                (id, owner_id, image_url, caption, month, year, prompt, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    memory.id,
                    memory.owner_id,
                    memory.image_url,
                    memory.caption,
                    memory.month,
                    memory.year,
                    memory.prompt,
                    _to_epoch(memory.created_at),
                ),
            )
            self.conn.commit()
        logger.debug("Memory saved | id=%s owner=%s", memory.id, memory.owner_id)
        return memory

    def _row_to_memory(self, row: sqlite3.Row) -> Memory:
        return Memory(
            id=row["id"],
            owner_id=row["owner_id"],
            image_url=row["image_url"],
            caption=row["caption"] or "",
            month=row["month"],
            year=row["year"],
            prompt=row["prompt"] or "",
            created_at=_from_epoch(row["created_at"]),
        )

    def get_memory(self, owner_id: str, memory_id: str) -> Memory | None:
        """Get one of an owner's memories, or None."""
        with _storage_errors("get memory"):
            row = self.conn.execute(
                "SELECT * FROM memories WHERE id = ? AND owner_id = ?",
                (memory_id, owner_id),
            ).fetchone()
        return self._row_to_memory(row) if row else None

    def list_memories(self, owner_id: str, year: int | None = None) -> list[Memory]:
        """List an owner's memories in calendar order."""
        query = "SELECT * FROM memories WHERE owner_id = ?"
        params: list[Any] = [owner_id]
        if year is not None:
            query += " AND year = ?"
            params.append(year)
        query += " ORDER BY year, month, created_at"

        with _storage_errors("list memories"):
            rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_memory(row) for row in rows]

    # === MemoryStore ===

    def put(self, record: MemoryEmbedding, image_url: str = "") -> None:
        """Upsert an embedding keyed by source_memory_id.

        The original id and created_at survive an overwrite. image_url is
        unused here; photo URLs come from the memories table.

        Raises:
            StorageError: On wrong dimensionality, a key owned by another
                account, or a database failure
        """
        if record.dim != self.dim:
            raise StorageError(f"embedding has {record.dim} dims, store expects {self.dim}")

        with _storage_errors("store embedding"):
            cursor = self.conn.execute(
                """
                INSERT INTO memory_embeddings
                (id, owner_id, source_memory_id, embedding, dim, content, tags,
                 month, year, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_memory_id) DO UPDATE SET
                    embedding = excluded.embedding,
                    dim = excluded.dim,
                    content = excluded.content,
                    tags = excluded.tags,
                    month = excluded.month,
                    year = excluded.year
                WHERE memory_embeddings.owner_id = excluded.owner_id
                """,
                (
                    record.id,
                    record.owner_id,
                    record.source_memory_id,
                    _embedding_to_blob(record.embedding),
                    record.dim,
                    record.content,
                    json.dumps(list(record.tags)),
                    record.month,
                    record.year,
                    _to_epoch(record.created_at),
                ),
            )
            self.conn.commit()

        if cursor.rowcount == 0:
            raise StorageError(
                f"source memory {record.source_memory_id} belongs to another owner"
            )
        logger.debug(
            "Embedding saved | source=%s owner=%s dim=%d",
            record.source_memory_id, record.owner_id, record.dim,
        )

    def _row_to_embedding(self, row: sqlite3.Row) -> MemoryEmbedding:
        return MemoryEmbedding(
            id=row["id"],
            owner_id=row["owner_id"],
            source_memory_id=row["source_memory_id"],
            embedding=_blob_to_embedding(row["embedding"]).tolist(),
            content=row["content"],
            tags=json.loads(row["tags"] or "[]"),
            month=row["month"],
            year=row["year"],
            created_at=_from_epoch(row["created_at"]),
        )

    def get_embedding(self, source_memory_id: str) -> MemoryEmbedding | None:
        """Get the embedding record for a source memory, or None."""
        with _storage_errors("get embedding"):
            row = self.conn.execute(
                "SELECT * FROM memory_embeddings WHERE source_memory_id = ?",
                (source_memory_id,),
            ).fetchone()
        return self._row_to_embedding(row) if row else None

    def query_by_owner(self, owner_id: str, year: int | None = None) -> list[MemoryEmbedding]:
        """Owner-scoped embedding records, most recent first."""
        query = "SELECT * FROM memory_embeddings WHERE owner_id = ?"
        params: list[Any] = [owner_id]
        if year is not None:
            query += " AND year = ?"
            params.append(year)
        query += " ORDER BY created_at DESC"

        with _storage_errors("query embeddings"):
            rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_embedding(row) for row in rows]

    def match_memories(
        self,
        query_vector: np.ndarray,
        threshold: float,
        count: int,
        owner_id: str,
        year: int | None = None,
    ) -> list[SimilarMemory]:
        """Owner-scoped cosine similarity search.

        Args:
            query_vector: Query embedding (dim,)
            threshold: Results must score strictly above this
            count: Maximum results
            owner_id: Only this owner's records are candidates
            year: Optional year filter

        Returns:
            Ranked matches (see memory.store.rank_matches)

        Raises:
            StorageError: On a dimensionality mismatch or database failure
        """
        query_vector = np.asarray(query_vector, dtype=np.float32).ravel()
        if query_vector.size != self.dim:
            raise StorageError(f"query has {query_vector.size} dims, store expects {self.dim}")

        sql = """
            SELECT e.source_memory_id, e.content, e.embedding, e.dim,
                   e.month, e.year, e.created_at, m.image_url
            FROM memory_embeddings e
            LEFT JOIN memories m ON m.id = e.source_memory_id
            WHERE e.owner_id = ?
        """
        params: list[Any] = [owner_id]
        if year is not None:
            sql += " AND e.year = ?"
            params.append(year)

        with _storage_errors("similarity search"):
            rows = [r for r in self.conn.execute(sql, params).fetchall() if r["dim"] == self.dim]

        if not rows:
            return []

        matrix = np.vstack([_blob_to_embedding(r["embedding"]) for r in rows])
        scores = similarity_scores(query_vector, matrix)

        matches = [
            SimilarMemory(
                source_memory_id=row["source_memory_id"],
                caption=row["content"],
                image_url=row["image_url"] or "",
                similarity=float(score),
                month=row["month"],
                year=row["year"],
                created_at=_from_epoch(row["created_at"]),
            )
            for row, score in zip(rows, scores)
        ]
        ranked = rank_matches(matches, threshold, count)
        logger.debug(
            "Similarity search | owner=%s candidates=%d results=%d",
            owner_id, len(rows), len(ranked),
        )
        return ranked

    def delete_memory(self, owner_id: str, source_memory_id: str) -> bool:
        """Delete a memory and its embedding.

        Returns:
            True if anything was deleted
        """
        with _storage_errors("delete memory"):
            emb = self.conn.execute(
                "DELETE FROM memory_embeddings WHERE owner_id = ? AND source_memory_id = ?",
                (owner_id, source_memory_id),
            )
            mem = self.conn.execute(
                "DELETE FROM memories WHERE owner_id = ? AND id = ?",
                (owner_id, source_memory_id),
            )
            self.conn.commit()
        deleted = emb.rowcount + mem.rowcount > 0
        if deleted:
            logger.info("Memory deleted | id=%s owner=%s", source_memory_id, owner_id)
        return deleted

    def delete_owner(self, owner_id: str) -> int:
        """Delete every memory and embedding of an account.

        Returns:
            Number of memory records deleted
        """
        with _storage_errors("delete account"):
            self.conn.execute("DELETE FROM memory_embeddings WHERE owner_id = ?", (owner_id,))
            cursor = self.conn.execute("DELETE FROM memories WHERE owner_id = ?", (owner_id,))
            self.conn.commit()
        deleted = cursor.rowcount
        logger.info("Account data deleted | owner=%s memories=%d", owner_id, deleted)
        return deleted

    def count(self) -> int:
        """Number of stored embeddings."""
        with _storage_errors("count embeddings"):
            row = self.conn.execute("SELECT COUNT(*) AS n FROM memory_embeddings").fetchone()
        return row["n"] or 0

    def stats(self) -> dict[str, int]:
        """Get database statistics.

        Returns:
            Dictionary with memory, embedding and owner counts
        """
        with _storage_errors("stats"):
            memories = self.conn.execute(
                "SELECT COUNT(*) AS total, COUNT(DISTINCT owner_id) AS owners FROM memories"
            ).fetchone()
            embedded = self.conn.execute(
                "SELECT COUNT(*) AS embedded FROM memory_embeddings"
            ).fetchone()

        return {
            "memories": memories["total"] or 0,
            "owners": memories["owners"] or 0,
            "embedded": embedded["embedded"] or 0,
        }

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> "Database":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
