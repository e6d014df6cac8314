"""Pydantic models for the FableForge memory recall service.

Memory:
    Captioned monthly photo saved to the Memory Jar.

MemoryEmbedding:
    Vector form of a memory caption, scoped to its owner.

SimilarMemory:
    Ranked recall result used to build narrative context.

Example:
    >>> from models import Memory, SimilarMemory
    >>> memory = Memory.create("user-1", "https://img/1.jpg", month=5, year=2024)
"""

from models.memory import MONTHLY_PROMPTS, Memory, MemoryEmbedding, SimilarMemory

__all__ = [
    "MONTHLY_PROMPTS",
    "Memory",
    "MemoryEmbedding",
    "SimilarMemory",
]
