"""Memory Jar service: save, recall and forget memories.

This module coordinates the recall subsystem:

Write path:
    1. SAVE: Persist the Memory record (failures propagate to the caller)
    2. EMBED: In a background task, embed the caption
    3. STORE: Upsert the embedding (failures are logged, never raised)

Read path:
    1. EMBED: Embed the query text
    2. MATCH: Owner-scoped similarity search (demo memories if unavailable)
    3. FORMAT: Build the narrative context block for the story prompt

The memory itself is always saved before its embedding, so a slow or
failing embedding provider never blocks or fails a save. Only recall for
that one memory degrades.

Deletion removes the embedding first and the record second. A failed
embedding delete leaves both in place so the call can be retried.
"""

import asyncio
import logging
from typing import Iterable

from config import Config
from database import Database
from embeddings import EmbeddingGenerator
from memory.context import format_narrative_context, story_query
from memory.recall import MemoryRecall
from memory.store import MemoryStore, StorageError
from memory.vector_store import VectorStore
from models.memory import Memory, MemoryEmbedding, SimilarMemory
from observability.logging import bind_memory, request_context
from observability.tracing import span, traced

logger = logging.getLogger(__name__)


class MemoryJar:
    """Saves memories and recalls them for narrative generation.

    Attributes:
        database: Memory Jar records (SQLite)
        store: Embedding backend (the database itself, or a VectorStore)
        generator: Caption/query embedder
        recall: Similarity search over store
        default_limit: Default recall size
        default_min_similarity: Default recall threshold

    Example:
        >>> jar = MemoryJar.from_config(Config.load())
        >>> memory = await jar.save_memory("u1", "https://img/1.jpg", 6, 2024, "Beach day")
        >>> await jar.drain()
        >>> context = await jar.build_narrative_context("u1", "beach")
    """

    def __init__(
        self,
        database: Database,
        generator: EmbeddingGenerator,
        store: MemoryStore | None = None,
        default_limit: int = 5,
        default_min_similarity: float = 0.7,
    ):
        self.database = database
        self.store = store if store is not None else database
        self.generator = generator
        self.recall = MemoryRecall(generator, self.store)
        self.default_limit = default_limit
        self.default_min_similarity = default_min_similarity
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: Config) -> "MemoryJar":
        """Build the service from application configuration."""
        database = Database(config.db_path, dim=config.embedding_dim)
        store: MemoryStore | None = None
        if config.store_backend == "chroma":
            store = VectorStore(config.vector_db_path, dim=config.embedding_dim)
        return cls(
            database=database,
            generator=EmbeddingGenerator(config.embedding),
            store=store,
            default_limit=config.recall_limit,
            default_min_similarity=config.recall_min_similarity,
        )

    @property
    def _separate_store(self) -> bool:
        return self.store is not self.database

    # === Write path ===

    async def save_memory(
        self,
        owner_id: str,
        image_url: str,
        month: int,
        year: int,
        caption: str = "",
        tags: Iterable[str] = (),
    ) -> Memory:
        """Save a memory and schedule its embedding.

        Args:
            owner_id: Owning account
            image_url: Uploaded photo URL
            month: Zero-based month
            year: Year
            caption: Caption (defaults to the monthly prompt)
            tags: Optional labels stored with the embedding

        Returns:
            The saved Memory

        Raises:
            StorageError: If the memory record itself cannot be saved
        """
        with request_context(owner_id), span("save_memory", month=month, year=year) as result:
            memory = self.database.add_memory(
                Memory.create(owner_id, image_url, month=month, year=year, caption=caption)
            )
            bind_memory(memory.id)
            result["memory_id"] = memory.id
            logger.info("Memory saved | month=%d year=%d", month, year)

            # The task copies the current context, so its logs keep these tags
            task = asyncio.create_task(self.attach_embedding(memory, tags))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return memory

    @traced("attach_embedding")
    async def attach_embedding(self, memory: Memory, tags: Iterable[str] = ()) -> bool:
        """Embed a memory's caption and upsert it. Best effort.

        Returns:
            True if the embedding was stored
        """
        generated = await self.generator.generate(memory.caption)
        record = MemoryEmbedding(
            owner_id=memory.owner_id,
            source_memory_id=memory.id,
            embedding=generated.vector.tolist(),
            content=memory.caption,
            tags=list(tags),
            month=memory.month,
            year=memory.year,
        )
        try:
            self.store.put(record, image_url=memory.image_url)
            if self.database.get_memory(memory.owner_id, memory.id) is None:
                # Deleted while the embedding was in flight
                self.store.delete_memory(memory.owner_id, memory.id)
                logger.info("Memory deleted before embedding was stored; embedding dropped")
                return False
        except StorageError as e:
            logger.warning("Memory embedding storage failed: %s", e)
            return False

        logger.debug("Memory embedding stored | source=%s", generated.source)
        return True

    async def drain(self) -> None:
        """Wait for all scheduled embedding tasks to finish.

        Failures are logged; they never propagate to the caller.
        """
        if not self._pending:
            return
        results = await asyncio.gather(*list(self._pending), return_exceptions=True)
        for outcome in results:
            if isinstance(outcome, BaseException):
                logger.error("Background embedding failed: %s", outcome, exc_info=outcome)

    # === Read path ===

    async def find_similar_memories(
        self,
        query: str,
        owner_id: str,
        limit: int | None = None,
        min_similarity: float | None = None,
        year: int | None = None,
    ) -> list[SimilarMemory]:
        """Owner-scoped recall with the configured defaults."""
        with request_context(owner_id):
            return await self.recall.find_similar_memories(
                query,
                owner_id,
                limit=self.default_limit if limit is None else limit,
                min_similarity=self.default_min_similarity if min_similarity is None else min_similarity,
                year=year,
            )

    async def build_narrative_context(
        self,
        owner_id: str,
        theme: str,
        year: int | None = None,
    ) -> str:
        """Recall memories for a story theme and format them for the prompt.

        Returns:
            Prompt-ready context block, or "" when nothing was recalled
        """
        with span("build_narrative_context", owner_id=owner_id, theme=theme) as result:
            memories = await self.find_similar_memories(story_query(theme), owner_id, year=year)
            result["memories"] = len(memories)
        return format_narrative_context(memories)

    # === Deletion ===

    def delete_memory(self, owner_id: str, memory_id: str) -> bool:
        """Delete a memory's embedding, then the memory.

        Returns:
            True if anything was deleted

        Raises:
            StorageError: If either delete fails. An embedding store
                failure leaves the memory untouched.
        """
        with request_context(owner_id, memory_id):
            removed_embedding = False
            if self._separate_store:
                removed_embedding = self.store.delete_memory(owner_id, memory_id)
            deleted = self.database.delete_memory(owner_id, memory_id) or removed_embedding
            logger.info("Delete memory | deleted=%s", deleted)
        return deleted

    def delete_account(self, owner_id: str) -> int:
        """Delete every embedding of an account, then every memory.

        Returns:
            Number of memory records deleted

        Raises:
            StorageError: If either delete fails. An embedding store
                failure leaves the memories untouched.
        """
        with request_context(owner_id):
            if self._separate_store:
                self.store.delete_owner(owner_id)
            deleted = self.database.delete_owner(owner_id)
        return deleted

    def close(self) -> None:
        self.database.close()
