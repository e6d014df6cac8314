"""Shared fixtures for the memory recall tests."""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from config import EmbeddingConfig
from database import Database
from embeddings import EmbeddingGenerator
from lexical import lexical_embedding
from models.memory import MemoryEmbedding

DIM = 384


@pytest.fixture
def lexical_config() -> EmbeddingConfig:
    """Embedding config with no provider, so every vector is lexical."""
    return EmbeddingConfig(provider="lexical", dim=DIM)


@pytest.fixture
def generator(lexical_config: EmbeddingConfig) -> EmbeddingGenerator:
    return EmbeddingGenerator(lexical_config)


@pytest.fixture
def db(tmp_path: Path) -> Database:
    """Database in a temporary directory."""
    database = Database(tmp_path / "memories.db", dim=DIM)
    yield database
    database.close()


@pytest.fixture
def restore_root_logging():
    """Undo handler changes made by setup_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def make_record(
    owner_id: str,
    source_memory_id: str,
    caption: str,
    month: int = 0,
    year: int = 2024,
    created_at: datetime | None = None,
    tags: list[str] | None = None,
) -> MemoryEmbedding:
    """Embedding record built from the lexical embedding of caption."""
    return MemoryEmbedding(
        owner_id=owner_id,
        source_memory_id=source_memory_id,
        embedding=lexical_embedding(caption, DIM).tolist(),
        content=caption,
        tags=tags or [],
        month=month,
        year=year,
        created_at=created_at or datetime.now(timezone.utc),
    )


def days_ago(n: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=n)
