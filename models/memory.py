"""Memory Jar data models.

This module defines the records that flow through the recall subsystem:

Memory:
    A captioned monthly photo collected in the Memory Jar.

MemoryEmbedding:
    The recallable vector form of a Memory's caption, scoped to its owner.

SimilarMemory:
    One ranked recall result handed to the narrative context builder.

Months are zero-based (0 = January, 11 = December) throughout.
"""

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

# Prompts shown for each month; the prompt doubles as the caption when the
# user leaves the caption blank.
MONTHLY_PROMPTS = [
    "What was their biggest smile moment this month?",
    "Capture a cozy reading moment",
    "Their favorite outdoor adventure",
    "A silly face or funny moment",
    "Learning something new",
    "Summer sunshine memories",
    "Their creative masterpiece",
    "A moment with a friend or pet",
    "Back to school excitement",
    "Fall colors and fun",
    "Grateful moments",
    "Holiday magic and wonder",
]


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Memory(BaseModel):
    """A photo memory saved to an owner's Memory Jar.

    Attributes:
        id: Unique memory identifier
        owner_id: Account the memory belongs to
        image_url: URL of the uploaded photo
        caption: User caption (falls back to the monthly prompt)
        month: Zero-based month the memory occurred in
        year: Year the memory occurred in
        prompt: Monthly prompt the user was answering
        created_at: When the memory was saved

    Example:
        >>> memory = Memory.create("user-1", "https://img/1.jpg", month=6, year=2024)
        >>> memory.caption
        'Their creative masterpiece'
    """

    id: str = Field(default_factory=_new_id)
    owner_id: str = Field(min_length=1)
    image_url: str
    caption: str = ""
    month: int = Field(ge=0, le=11)
    year: int
    prompt: str = ""
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        owner_id: str,
        image_url: str,
        month: int,
        year: int,
        caption: str = "",
    ) -> "Memory":
        """Build a new memory, defaulting the caption to the monthly prompt."""
        prompt = MONTHLY_PROMPTS[month] if 0 <= month < len(MONTHLY_PROMPTS) else ""
        return cls(
            owner_id=owner_id,
            image_url=image_url,
            caption=caption.strip() or prompt,
            month=month,
            year=year,
            prompt=prompt,
        )

    def __str__(self) -> str:
        return f"Memory({self.id[:8]}..., '{self.caption[:40]}')"


class MemoryEmbedding(BaseModel):
    """One recallable unit of personal history.

    Records are immutable; a new caption for the same source memory
    replaces the record through an upsert keyed by source_memory_id.

    Attributes:
        id: Unique identifier, kept across upserts
        owner_id: Account scope for every read and write
        source_memory_id: Weak reference to the underlying Memory
        embedding: Unit-normalised vector
        content: Caption the vector was derived from
        tags: Free-form labels
        month: Zero-based month
        year: Year
        created_at: First insertion time
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    owner_id: str = Field(min_length=1)
    source_memory_id: str = Field(min_length=1)
    embedding: list[float]
    content: str
    tags: list[str] = Field(default_factory=list)
    month: int = Field(ge=0, le=11)
    year: int
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def dim(self) -> int:
        return len(self.embedding)

    def __str__(self) -> str:
        return f"MemoryEmbedding({self.source_memory_id[:8]}..., dim={self.dim})"


class SimilarMemory(BaseModel):
    """A memory returned from similarity search.

    Attributes:
        source_memory_id: The matched Memory
        caption: Caption text
        image_url: Photo URL (empty when unknown)
        similarity: Cosine similarity to the query, in [-1, 1]
        month: Zero-based month
        year: Year
        created_at: Insertion time of the embedding, used for tie-breaks
    """

    source_memory_id: str
    caption: str
    image_url: str = ""
    similarity: float
    month: int
    year: int
    created_at: datetime | None = None

    def __str__(self) -> str:
        return f"SimilarMemory({self.similarity:.3f}, '{self.caption[:40]}')"
