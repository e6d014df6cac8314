"""Memory recall infrastructure for the Memory Jar.

MemoryStore / StorageError:
    Backend protocol and its failure type.

VectorStore:
    ChromaDB-backed MemoryStore (STORE_BACKEND=chroma). The SQLite
    backend lives in database.py.

MemoryRecall:
    Owner-scoped similarity search with a demo fallback.

format_narrative_context:
    Formats recalled memories for the story-generation prompt.

Example:
    >>> from memory import MemoryRecall, format_narrative_context
    >>> recall = MemoryRecall(generator, store)
    >>> memories = await recall.find_similar_memories("beach day", owner_id="u1")
    >>> context = format_narrative_context(memories)
"""

from memory.context import format_narrative_context, month_name
from memory.recall import MemoryRecall, demo_memories
from memory.store import MemoryStore, StorageError, cosine_similarity, rank_matches
from memory.vector_store import VectorStore

__all__ = [
    "MemoryStore",
    "StorageError",
    "VectorStore",
    "MemoryRecall",
    "cosine_similarity",
    "demo_memories",
    "format_narrative_context",
    "month_name",
    "rank_matches",
]
