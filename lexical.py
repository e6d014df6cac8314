"""Deterministic lexical pseudo-embeddings.

Used when no embedding provider is configured or the provider fails. The
same text always yields the same vector, in every process, so recall stays
reproducible offline. A curated keyword table gives related captions
("beach", "ocean", "sand") overlapping dimensions; every other token lands
in a hashed bucket so unmapped vocabulary still carries a stable signal.

Vector layout (dim D, D >= 310):
    [0, 300)        keyword table indices
    [300, D - 4)    FNV-1a hash buckets
    D - 4           token count feature, min(tokens / 20, 1)
    D - 3           contains '!'
    D - 2           contains '?'
    D - 1           fraction of tokens longer than 6 characters
"""

import math
import re

import numpy as np

KEYWORD_WEIGHT = 1.0
HASH_WEIGHT = 0.5
HASH_BUCKET_START = 300
FEATURE_SLOTS = 4
MIN_TOKEN_LENGTH = 3
LONG_TOKEN_LENGTH = 6

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193

_PUNCTUATION = re.compile(r"[^\w\s]")

# Keyword -> dimensions, grouped by theme of children's storybooks
KEYWORD_DIMS: dict[str, tuple[int, ...]] = {
    # Emotions (0-49)
    "happy": (0, 1, 2),
    "joy": (0, 1, 3),
    "smile": (1, 2, 4),
    "laugh": (2, 3, 5),
    "brave": (10, 11, 12),
    "courage": (10, 11, 13),
    "fear": (15, 16, 17),
    "kind": (20, 21, 22),
    "love": (20, 22, 23),
    "friend": (25, 26, 27),
    # Activities (50-99)
    "play": (50, 51, 52),
    "run": (53, 54, 55),
    "jump": (56, 57, 58),
    "learn": (60, 61, 62),
    "read": (63, 64, 65),
    "draw": (66, 67, 68),
    "swim": (70, 71, 72),
    "bike": (73, 74, 75),
    "climb": (76, 77, 78),
    # Nature and places (100-149)
    "beach": (100, 101, 102),
    "ocean": (100, 103, 104),
    "sand": (101, 105),
    "forest": (110, 111, 112),
    "tree": (110, 113),
    "garden": (115, 116),
    "park": (120, 121, 122),
    "adventure": (125, 126, 127),
    "explore": (128, 129),
    # Family (150-199)
    "mom": (150, 151),
    "mother": (150, 152),
    "dad": (155, 156),
    "father": (155, 157),
    "family": (160, 161, 162),
    "brother": (165, 166),
    "sister": (167, 168),
    "grandma": (170, 171),
    "grandpa": (172, 173),
    "pet": (175, 176),
    "dog": (177,),
    "cat": (178,),
    # Seasons and time (200-249)
    "summer": (200, 201, 202),
    "winter": (205, 206, 207),
    "spring": (210, 211),
    "fall": (215, 216),
    "autumn": (215, 217),
    "birthday": (220, 221, 222),
    "holiday": (225, 226, 227),
    "christmas": (225, 228),
    "first": (230, 231),
    # Milestones (250-299)
    "school": (250, 251, 252),
    "celebrate": (255, 256),
    "graduation": (258, 259),
    "tooth": (260, 261),
    "walk": (265, 266),
    "talk": (268, 269),
    "new": (270, 271),
}


def fnv1a_32(data: str | bytes) -> int:
    """32-bit FNV-1a hash.

    Strings are hashed as UTF-8 bytes, so bucket assignment does not depend
    on the interpreter's hash seed.

    Example:
        >>> hex(fnv1a_32(""))
        '0x811c9dc5'
        >>> hex(fnv1a_32("a"))
        '0xe40c292c'
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    h = FNV_OFFSET_BASIS
    for byte in data:
        h ^= byte
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, split on whitespace, drop short tokens."""
    cleaned = _PUNCTUATION.sub("", text.lower())
    return [tok for tok in cleaned.split() if len(tok) >= MIN_TOKEN_LENGTH]


def degenerate_vector(dim: int) -> np.ndarray:
    """Low-amplitude deterministic pattern used in place of a zero vector."""
    return (np.sin(np.arange(dim, dtype=np.float64) * 0.1) * 0.01).astype(np.float32)


def lexical_embedding(text: str, dim: int = 384) -> np.ndarray:
    """Compute the deterministic pseudo-embedding for text.

    Args:
        text: Input text (any length, may be empty)
        dim: Output dimensionality

    Returns:
        float32 array of shape (dim,), unit-normalised unless the text has
        no usable signal, in which case the degenerate pattern is returned

    Raises:
        ValueError: If dim leaves no room for hash buckets
    """
    bucket_count = dim - HASH_BUCKET_START - FEATURE_SLOTS
    if bucket_count <= 0:
        raise ValueError(f"dim={dim} too small for lexical embedding")

    vec = np.zeros(dim, dtype=np.float64)
    tokens = tokenize(text)

    for token in tokens:
        for idx in KEYWORD_DIMS.get(token, ()):
            vec[idx] += KEYWORD_WEIGHT
        vec[HASH_BUCKET_START + fnv1a_32(token) % bucket_count] += HASH_WEIGHT

    vec[dim - 4] = min(len(tokens) / 20, 1.0)
    vec[dim - 3] = 1.0 if "!" in text else 0.0
    vec[dim - 2] = 1.0 if "?" in text else 0.0
    vec[dim - 1] = sum(1 for t in tokens if len(t) > LONG_TOKEN_LENGTH) / max(len(tokens), 1)

    magnitude = math.sqrt(float(np.dot(vec, vec)))
    if magnitude < 1e-12:
        return degenerate_vector(dim)
    return (vec / magnitude).astype(np.float32)
