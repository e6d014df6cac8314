"""Similarity search over an owner's memories.

MemoryRecall embeds a free-text query and asks the store for the most
similar owner-scoped memories. Recall is an enhancement, never a hard
dependency: when the store cannot answer, a small fixed set of example
memories is returned instead of an error.

Example:
    >>> recall = MemoryRecall(generator, store)
    >>> memories = await recall.find_similar_memories(
    ...     "a beach adventure story for a child", owner_id="u1", min_similarity=0.1,
    ... )
"""

import logging

from embeddings import EmbeddingGenerator
from memory.store import MemoryStore, StorageError, rank_matches
from models.memory import SimilarMemory
from observability.tracing import span

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 5
DEFAULT_MIN_SIMILARITY = 0.7

DEMO_MEMORIES = (
    SimilarMemory(
        source_memory_id="demo-1",
        caption="First day at the beach, building sandcastles with Dad",
        image_url="https://images.unsplash.com/photo-1507525428034-b723cf961d3e?w=400",
        similarity=0.92,
        month=6,
        year=2024,
    ),
    SimilarMemory(
        source_memory_id="demo-2",
        caption="Learning to ride a bike in the park",
        image_url="https://images.unsplash.com/photo-1558618666-fcd25c85cd64?w=400",
        similarity=0.85,
        month=4,
        year=2024,
    ),
    SimilarMemory(
        source_memory_id="demo-3",
        caption="Birthday party with friends and the big chocolate cake",
        image_url="https://images.unsplash.com/photo-1464349153735-7db50ed83c84?w=400",
        similarity=0.78,
        month=9,
        year=2024,
    ),
)


def demo_memories(min_similarity: float = DEFAULT_MIN_SIMILARITY, limit: int = DEFAULT_LIMIT) -> list[SimilarMemory]:
    """Example memories used when the store is unavailable.

    Filtered and truncated like real results, so callers never see a
    result at or below their threshold.
    """
    return rank_matches([m.model_copy() for m in DEMO_MEMORIES], min_similarity, limit)


class MemoryRecall:
    """Finds an owner's memories most similar to a query.

    Attributes:
        generator: Embeds query text
        store: Backend answering similarity queries
    """

    def __init__(self, generator: EmbeddingGenerator, store: MemoryStore):
        self.generator = generator
        self.store = store

    async def find_similar_memories(
        self,
        query: str,
        owner_id: str,
        limit: int = DEFAULT_LIMIT,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        year: int | None = None,
    ) -> list[SimilarMemory]:
        """Return up to limit memories scoring strictly above min_similarity.

        Args:
            query: Free-text query
            owner_id: Only this owner's memories are considered
            limit: Maximum results (K)
            min_similarity: Cosine threshold in [-1, 1]
            year: Optional year filter

        Returns:
            Memories in non-increasing similarity order (ties: most recent
            first). Empty when nothing qualifies. Demo memories when the
            store is unavailable.
        """
        if limit <= 0:
            return []

        with span(
            "find_similar_memories",
            owner_id=owner_id,
            limit=limit,
            min_similarity=min_similarity,
            year=year,
        ) as result:
            embedded = await self.generator.generate(query)
            result["embedding_source"] = embedded.source
            try:
                results = self.store.match_memories(
                    embedded.vector,
                    threshold=min_similarity,
                    count=limit,
                    owner_id=owner_id,
                    year=year,
                )
            except StorageError as e:
                logger.warning("Similar memory search failed, using demo memories: %s", e)
                demos = demo_memories(min_similarity, limit)
                result["fallback"] = True
                result["results"] = len(demos)
                return demos

            result["fallback"] = False
            result["results"] = len(results)

        logger.debug(
            "Recall complete | owner=%s year=%s results=%d",
            owner_id, year, len(results),
        )
        return results
