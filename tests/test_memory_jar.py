"""Tests for the MemoryJar service."""

import asyncio
import logging
from pathlib import Path

import pytest

from config import Config
from database import Database
from embeddings import EmbeddingGenerator
from memory.context import CONTEXT_HEADER
from memory.store import StorageError
from memory_jar import MemoryJar
from observability.logging import ContextFilter, memory_id_var, owner_id_var


class FailingStore:
    """Store that rejects every write and read."""

    def put(self, record, image_url=""):
        raise StorageError("disk full")

    def match_memories(self, query_vector, threshold, count, owner_id, year=None):
        raise StorageError("unavailable")

    def delete_memory(self, owner_id, source_memory_id):
        return False

    def delete_owner(self, owner_id):
        return 0


class SlowGenerator(EmbeddingGenerator):
    """Generator that waits on an event before embedding."""

    def __init__(self, config, release: asyncio.Event):
        super().__init__(config)
        self.release = release

    async def generate(self, text):
        await self.release.wait()
        return await super().generate(text)


@pytest.fixture
def jar(db: Database, generator: EmbeddingGenerator) -> MemoryJar:
    return MemoryJar(db, generator, default_min_similarity=0.1)


class TestSaveMemory:
    """Tests for the write path."""

    @pytest.mark.asyncio
    async def test_save_and_embed(self, jar: MemoryJar, db: Database):
        memory = await jar.save_memory(
            "U1", "https://img/beach.jpg", month=6, year=2024,
            caption="First day at the beach, building sandcastles",
            tags=["summer"],
        )
        await jar.drain()

        assert db.get_memory("U1", memory.id) is not None
        record = db.get_embedding(memory.id)
        assert record is not None
        assert record.owner_id == "U1"
        assert record.tags == ["summer"]
        assert record.content == memory.caption

    @pytest.mark.asyncio
    async def test_blank_caption_uses_monthly_prompt(self, jar: MemoryJar, db: Database):
        memory = await jar.save_memory("U1", "https://img/1.jpg", month=1, year=2024)
        await jar.drain()
        assert memory.caption == "Capture a cozy reading moment"
        assert db.get_embedding(memory.id).content == memory.caption

    @pytest.mark.asyncio
    async def test_save_returns_before_embedding(self, db: Database, lexical_config):
        """A slow embedding never blocks the save."""
        release = asyncio.Event()
        jar = MemoryJar(db, SlowGenerator(lexical_config, release))

        memory = await jar.save_memory("U1", "https://img/1.jpg", month=3, year=2024, caption="Beach")

        assert db.get_memory("U1", memory.id) is not None
        assert db.get_embedding(memory.id) is None
        release.set()
        await jar.drain()
        assert db.get_embedding(memory.id) is not None

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_memory(self, db: Database, generator):
        jar = MemoryJar(db, generator, store=FailingStore())

        memory = await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024, caption="Beach")
        await jar.drain()

        assert db.get_memory("U1", memory.id) is not None

    @pytest.mark.asyncio
    async def test_attach_embedding_reports_failure(self, db: Database, generator):
        jar = MemoryJar(db, generator, store=FailingStore())
        memory = await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024, caption="Beach")
        await jar.drain()

        assert await jar.attach_embedding(memory) is False

    @pytest.mark.asyncio
    async def test_record_save_failure_propagates(self, tmp_path: Path, generator):
        database = Database(tmp_path / "memories.db")
        database.close()
        jar = MemoryJar(database, generator)

        with pytest.raises(StorageError):
            await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024)


class TestRecall:
    """Tests for the read path."""

    @pytest.mark.asyncio
    async def test_narrative_context(self, jar: MemoryJar):
        await jar.save_memory(
            "U1", "https://img/beach.jpg", month=6, year=2024,
            caption="First day at the beach, building sandcastles",
        )
        await jar.drain()

        context = await jar.build_narrative_context("U1", "beach")

        assert context.startswith(CONTEXT_HEADER)
        assert "[Memory 1 - July]: First day at the beach, building sandcastles" in context

    @pytest.mark.asyncio
    async def test_no_memories_no_context(self, jar: MemoryJar):
        assert await jar.build_narrative_context("U2", "beach") == ""

    @pytest.mark.asyncio
    async def test_defaults_apply(self, jar: MemoryJar):
        for i, caption in enumerate(["Beach day", "Sand at the beach", "Ocean beach swim"]):
            await jar.save_memory("U1", f"https://img/{i}.jpg", month=i, year=2024, caption=caption)
        await jar.drain()
        jar.default_limit = 2

        results = await jar.find_similar_memories("beach", "U1")

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_unavailable_store_uses_demo(self, db: Database, generator):
        jar = MemoryJar(db, generator, store=FailingStore(), default_min_similarity=0.7)

        results = await jar.find_similar_memories("beach", "U1")

        assert [m.source_memory_id for m in results] == ["demo-1", "demo-2", "demo-3"]


class TestDeletion:
    """Tests for deleting memories and accounts."""

    @pytest.mark.asyncio
    async def test_delete_memory(self, jar: MemoryJar, db: Database):
        memory = await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024, caption="Beach")
        await jar.drain()

        assert jar.delete_memory("U1", memory.id) is True
        assert db.get_embedding(memory.id) is None
        assert await jar.find_similar_memories("beach", "U1", min_similarity=-1.0) == []

    @pytest.mark.asyncio
    async def test_delete_account(self, jar: MemoryJar, db: Database):
        for month in range(3):
            await jar.save_memory("U1", "https://img/1.jpg", month=month, year=2024)
        await jar.save_memory("U2", "https://img/2.jpg", month=0, year=2024)
        await jar.drain()

        assert jar.delete_account("U1") == 3
        assert db.list_memories("U1") == []
        assert len(db.list_memories("U2")) == 1


class TestFromConfig:
    def test_sqlite_backend(self, tmp_path: Path):
        config = Config(embedding_provider="lexical", db_path=tmp_path / "memories.db")
        jar = MemoryJar.from_config(config)
        try:
            assert jar.store is jar.database
            assert jar.default_limit == 5
            assert jar.default_min_similarity == 0.7
        finally:
            jar.close()


class SeparateStore:
    """Embedding store kept apart from the database, with a switchable delete."""

    def __init__(self, db: Database, fail_deletes: bool = False):
        self.db = db
        self.fail_deletes = fail_deletes
        self.puts: list[str] = []

    def put(self, record, image_url=""):
        self.puts.append(record.source_memory_id)
        self.db.put(record, image_url)

    def match_memories(self, query_vector, threshold, count, owner_id, year=None):
        return self.db.match_memories(query_vector, threshold, count, owner_id, year)

    def delete_memory(self, owner_id, source_memory_id):
        if self.fail_deletes:
            raise StorageError("vector store offline")
        return self.db.delete_memory(owner_id, source_memory_id)

    def delete_owner(self, owner_id):
        if self.fail_deletes:
            raise StorageError("vector store offline")
        return self.db.delete_owner(owner_id)


@pytest.fixture
def embedding_db(tmp_path: Path) -> Database:
    database = Database(tmp_path / "embeddings.db")
    yield database
    database.close()


class TestDeletionOrder:
    """A failed embedding delete never leaves a recallable orphan."""

    @pytest.mark.asyncio
    async def test_failed_store_delete_keeps_memory(self, db, embedding_db, generator):
        store = SeparateStore(embedding_db)
        jar = MemoryJar(db, generator, store=store, default_min_similarity=-1.0)
        memory = await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024, caption="Beach")
        await jar.drain()

        store.fail_deletes = True
        with pytest.raises(StorageError):
            jar.delete_memory("U1", memory.id)

        assert db.get_memory("U1", memory.id) is not None
        assert embedding_db.get_embedding(memory.id) is not None

        store.fail_deletes = False
        assert jar.delete_memory("U1", memory.id) is True
        assert db.get_memory("U1", memory.id) is None
        assert await jar.find_similar_memories("beach", "U1") == []

    @pytest.mark.asyncio
    async def test_failed_store_delete_keeps_account(self, db, embedding_db, generator):
        store = SeparateStore(embedding_db, fail_deletes=True)
        jar = MemoryJar(db, generator, store=store)
        await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024, caption="Beach")
        await jar.drain()

        with pytest.raises(StorageError):
            jar.delete_account("U1")

        assert len(db.list_memories("U1")) == 1

    @pytest.mark.asyncio
    async def test_delete_during_embedding_drops_embedding(self, db, embedding_db, lexical_config):
        release = asyncio.Event()
        store = SeparateStore(embedding_db)
        jar = MemoryJar(db, SlowGenerator(lexical_config, release), store=store)
        memory = await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024, caption="Beach")

        jar.delete_memory("U1", memory.id)
        release.set()
        await jar.drain()

        assert store.puts == [memory.id]
        assert embedding_db.get_embedding(memory.id) is None


class TestDrain:
    """Tests for drain()."""

    @pytest.mark.asyncio
    async def test_task_failure_is_logged_not_raised(self, jar: MemoryJar, caplog):
        async def broken(memory, tags=()):
            raise RuntimeError("model crashed")

        jar.attach_embedding = broken
        await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024, caption="Beach")
        await jar.save_memory("U1", "https://img/2.jpg", month=1, year=2024, caption="Snow")

        with caplog.at_level(logging.ERROR, logger="memory_jar"):
            await jar.drain()

        failures = [r for r in caplog.records if "Background embedding failed" in r.getMessage()]
        assert len(failures) == 2

    @pytest.mark.asyncio
    async def test_nothing_pending(self, jar: MemoryJar):
        await jar.drain()


class TestLogContext:
    """Save and recall tag their log lines with owner and memory."""

    @pytest.mark.asyncio
    async def test_embedding_logs_carry_owner_and_memory(self, jar: MemoryJar, caplog):
        caplog.handler.addFilter(ContextFilter())
        with caplog.at_level(logging.DEBUG, logger="memory_jar"):
            memory = await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024, caption="Beach")
            await jar.drain()

        stored = [r for r in caplog.records if "Memory embedding stored" in r.getMessage()]
        assert len(stored) == 1
        # Context is scoped to the save; the background task inherited it
        assert owner_id_var.get() == "-"
        assert memory_id_var.get() == "-"
        assert stored[0].owner_id == "U1"
        assert stored[0].memory_id == memory.id

    @pytest.mark.asyncio
    async def test_each_request_gets_its_own_id(self, jar: MemoryJar, caplog):
        caplog.handler.addFilter(ContextFilter())
        with caplog.at_level(logging.INFO, logger="memory_jar"):
            await jar.save_memory("U1", "https://img/1.jpg", month=0, year=2024, caption="Beach")
            await jar.save_memory("U1", "https://img/2.jpg", month=1, year=2024, caption="Snow")
        await jar.drain()

        ids = [r.request_id for r in caplog.records if r.getMessage().startswith("Memory saved")]
        assert len(ids) == 2
        assert ids[0] != ids[1]
