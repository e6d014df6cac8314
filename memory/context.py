"""Narrative context formatting.

Turns ranked recall results into the text block spliced into the
story-generation prompt. An empty string means "no context": the caller
leaves the section out of the prompt entirely.
"""

from typing import Iterable

from models.memory import SimilarMemory

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

CONTEXT_HEADER = (
    "The following are real memories from this child's year "
    "that should be woven into the story:"
)
CONTEXT_INSTRUCTION = (
    "Use these memories naturally within the narrative to create a "
    "personalized story that references real experiences."
)


def month_name(month: int) -> str:
    """Zero-based month number to its English name, or 'Unknown'."""
    if 0 <= month < len(MONTH_NAMES):
        return MONTH_NAMES[month]
    return "Unknown"


def story_query(theme: str) -> str:
    """Recall query used when building context for a story theme."""
    return f"A {theme} adventure story for a child"


def format_narrative_context(memories: Iterable[SimilarMemory]) -> str:
    """Format recalled memories as a prompt-ready block.

    Args:
        memories: Ranked memories, possibly empty

    Returns:
        "" for no memories, otherwise the header, one
        "[Memory N - Month]: caption" line per memory and the closing
        instruction
    """
    lines = [
        f"[Memory {i} - {month_name(m.month)}]: {m.caption}"
        for i, m in enumerate(memories, 1)
    ]
    if not lines:
        return ""
    return "\n\n".join([CONTEXT_HEADER, "\n".join(lines), CONTEXT_INSTRUCTION])
