"""ChromaDB-backed MemoryStore.

Alternative to the SQLite backend for deployments that want an
approximate nearest-neighbour index. Vectors are always supplied by
EmbeddingGenerator; the collection never embeds text itself.

Features:
    - Lazy initialization (ChromaDB loaded only when needed)
    - Cosine-space HNSW collection, similarity = 1 - distance
    - Owner and year filters pushed down as `where` clauses; every
      owner-scoped candidate is scored so tie-breaks are exact
    - Upsert keyed by source_memory_id that keeps the original id and
      created_at

Enable via configuration:
    STORE_BACKEND=chroma
    VECTOR_DB_PATH=./vectors

Photo URLs are kept in record metadata because the memories table lives
in the SQLite database.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np

from memory.store import StorageError, rank_matches
from models.memory import MemoryEmbedding, SimilarMemory

logger = logging.getLogger(__name__)


def _owner_filter(owner_id: str, year: int | None = None) -> dict[str, Any]:
    if year is None:
        return {"owner_id": owner_id}
    return {"$and": [{"owner_id": owner_id}, {"year": year}]}


def _timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


class VectorStore:
    """ChromaDB collection of memory embeddings.

    Records are stored under their source_memory_id, so upserts replace the
    previous vector for the same memory.
    """

    def __init__(
        self,
        path: Path | str,
        dim: int = 384,
        collection_name: str = "memory_embeddings",
    ):
        """Initialize the vector store.

        Args:
            path: Directory path for persistent storage
            dim: Embedding dimensionality accepted by put()
            collection_name: Name of the ChromaDB collection
        """
        self.path = Path(path)
        self.dim = dim
        self.collection_name = collection_name
        self._client = None
        self._collection = None

    def _ensure_initialized(self):
        """Lazily open the persistent client and collection.

        Raises:
            StorageError: If ChromaDB is missing or cannot open the store
        """
        if self._collection is not None:
            return self._collection

        try:
            import chromadb
            from chromadb.config import Settings
        except ImportError as e:
            raise StorageError("ChromaDB not installed") from e

        try:
            self.path.mkdir(parents=True, exist_ok=True)
            self._client = chromadb.PersistentClient(
                path=str(self.path),
                settings=Settings(anonymized_telemetry=False),
            )
            self._collection = self._client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine", "description": "FableForge memory embeddings"},
                embedding_function=None,
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize vector store: {e}") from e

        logger.info("Vector store initialized at %s", self.path)
        return self._collection

    def _existing(self, collection, source_memory_id: str) -> dict[str, Any] | None:
        result = collection.get(ids=[source_memory_id], include=["metadatas"])
        if result["ids"]:
            return result["metadatas"][0]
        return None

    def put(self, record: MemoryEmbedding, image_url: str = "") -> None:
        """Upsert a memory embedding.

        Raises:
            StorageError: On wrong dimensionality, a key owned by another
                account, or a ChromaDB failure
        """
        if record.dim != self.dim:
            raise StorageError(f"embedding has {record.dim} dims, store expects {self.dim}")

        collection = self._ensure_initialized()
        try:
            existing = self._existing(collection, record.source_memory_id)
            if existing and existing.get("owner_id") != record.owner_id:
                raise StorageError(
                    f"source memory {record.source_memory_id} belongs to another owner"
                )

            metadata = {
                "record_id": existing["record_id"] if existing else record.id,
                "owner_id": record.owner_id,
                "tags": json.dumps(list(record.tags)),
                "month": record.month,
                "year": record.year,
                "image_url": image_url or (existing or {}).get("image_url", ""),
                "created_at": existing["created_at"] if existing else _timestamp(record.created_at),
            }
            collection.upsert(
                ids=[record.source_memory_id],
                embeddings=[list(map(float, record.embedding))],
                documents=[record.content],
                metadatas=[metadata],
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to store embedding: {e}") from e

        logger.debug("Added memory to vector store: %s", record.source_memory_id)

    def match_memories(
        self,
        query_vector: np.ndarray,
        threshold: float,
        count: int,
        owner_id: str,
        year: int | None = None,
    ) -> list[SimilarMemory]:
        """Owner-scoped nearest-neighbour search.

        Raises:
            StorageError: If the query fails
        """
        collection = self._ensure_initialized()
        if count <= 0:
            return []

        where = _owner_filter(owner_id, year)
        try:
            # Score every candidate; ties at the cut-off are settled by rank_matches
            candidates = len(collection.get(where=where, include=[])["ids"])
            if candidates == 0:
                return []
            results = collection.query(
                query_embeddings=[np.asarray(query_vector, dtype=np.float32).tolist()],
                n_results=candidates,
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            raise StorageError(f"Vector search error: {e}") from e

        matches = []
        for memory_id, doc, metadata, distance in zip(
            results["ids"][0],
            results["documents"][0],
            results["metadatas"][0],
            results["distances"][0],
        ):
            # Cosine space: distance = 1 - similarity
            similarity = float(np.clip(1.0 - distance, -1.0, 1.0))
            matches.append(SimilarMemory(
                source_memory_id=memory_id,
                caption=doc or "",
                image_url=metadata.get("image_url", ""),
                similarity=similarity,
                month=metadata["month"],
                year=metadata["year"],
                created_at=datetime.fromtimestamp(metadata["created_at"], timezone.utc),
            ))

        return rank_matches(matches, threshold, count)

    def query_by_owner(self, owner_id: str, year: int | None = None) -> list[MemoryEmbedding]:
        """Owner-scoped records, most recent first."""
        collection = self._ensure_initialized()
        try:
            result = collection.get(
                where=_owner_filter(owner_id, year),
                include=["documents", "metadatas", "embeddings"],
            )
        except Exception as e:
            raise StorageError(f"Vector store read error: {e}") from e

        records = [
            MemoryEmbedding(
                id=metadata.get("record_id") or str(uuid.uuid4()),
                owner_id=metadata["owner_id"],
                source_memory_id=memory_id,
                embedding=[float(x) for x in embedding],
                content=doc or "",
                tags=json.loads(metadata.get("tags", "[]")),
                month=metadata["month"],
                year=metadata["year"],
                created_at=datetime.fromtimestamp(metadata["created_at"], timezone.utc),
            )
            for memory_id, doc, metadata, embedding in zip(
                result["ids"],
                result["documents"],
                result["metadatas"],
                result["embeddings"],
            )
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def delete_memory(self, owner_id: str, source_memory_id: str) -> bool:
        """Delete one memory's embedding if the owner matches."""
        collection = self._ensure_initialized()
        try:
            existing = self._existing(collection, source_memory_id)
            if not existing or existing.get("owner_id") != owner_id:
                return False
            collection.delete(ids=[source_memory_id])
        except Exception as e:
            raise StorageError(f"Vector store delete error: {e}") from e
        return True

    def delete_owner(self, owner_id: str) -> int:
        """Delete all of an owner's embeddings.

        Returns:
            Number of embeddings deleted
        """
        collection = self._ensure_initialized()
        try:
            ids = collection.get(where={"owner_id": owner_id}, include=[])["ids"]
            if ids:
                collection.delete(ids=ids)
        except Exception as e:
            raise StorageError(f"Vector store delete error: {e}") from e
        return len(ids)

    def count(self) -> int:
        """Get the number of embeddings in the store."""
        collection = self._ensure_initialized()
        try:
            return collection.count()
        except Exception as e:
            raise StorageError(f"Vector store count error: {e}") from e
