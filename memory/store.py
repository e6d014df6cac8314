"""Memory store interface and shared ranking helpers.

Every backend (SQLite in database.py, ChromaDB in memory/vector_store.py)
implements MemoryStore and ranks through rank_matches, so threshold
filtering and tie-breaking behave identically everywhere.

Ranking order:
    1. similarity, descending
    2. created_at, most recent first
    3. source_memory_id, ascending
"""

from datetime import datetime, timezone
from typing import Iterable, Protocol

import numpy as np

from models.memory import MemoryEmbedding, SimilarMemory

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class StorageError(Exception):
    """The backing store is unreachable or rejected the operation."""


class MemoryStore(Protocol):
    """Per-owner persistence of MemoryEmbedding records."""

    def put(self, record: MemoryEmbedding, image_url: str = "") -> None:
        """Upsert the record keyed by its source_memory_id."""
        ...

    def match_memories(
        self,
        query_vector: np.ndarray,
        threshold: float,
        count: int,
        owner_id: str,
        year: int | None = None,
    ) -> list[SimilarMemory]:
        """Return up to count owner-scoped matches with similarity > threshold."""
        ...

    def query_by_owner(self, owner_id: str, year: int | None = None) -> list[MemoryEmbedding]:
        ...

    def delete_memory(self, owner_id: str, source_memory_id: str) -> bool:
        ...

    def delete_owner(self, owner_id: str) -> int:
        ...

    def count(self) -> int:
        ...


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity dot(a, b) / (|a| |b|), clipped to [-1, 1].

    Returns 0.0 for mismatched lengths or zero-magnitude vectors.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        return 0.0
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / denom, -1.0, 1.0))


def similarity_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of query against every row of matrix.

    Args:
        query: Vector of shape (dim,)
        matrix: Candidate vectors of shape (n, dim)

    Returns:
        Array of shape (n,) with values in [-1, 1]; zero-magnitude rows
        score 0.0
    """
    query = np.asarray(query, dtype=np.float64).ravel()
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)

    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    dots = matrix @ query
    scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    return np.clip(scores, -1.0, 1.0)


def _sort_key(match: SimilarMemory) -> tuple[float, float, str]:
    created = match.created_at or _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (-match.similarity, -created.timestamp(), match.source_memory_id)


def rank_matches(
    matches: Iterable[SimilarMemory],
    threshold: float,
    limit: int,
) -> list[SimilarMemory]:
    """Drop matches at or below threshold, sort, and keep the first limit."""
    if limit <= 0:
        return []
    kept = [m for m in matches if m.similarity > threshold]
    kept.sort(key=_sort_key)
    return kept[:limit]
