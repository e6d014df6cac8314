"""Embedding generation for Memory Jar recall.

This module turns caption text into fixed-length, unit-normalised vectors.

Providers:
    OpenAIEmbeddingProvider: hosted embeddings endpoint over HTTPS (aiohttp)
    LocalEmbeddingProvider: sentence-transformers model on CPU
        (BAAI/bge-small-en-v1.5, 384 dimensions)

Providers never raise. Each call returns an EmbeddingOutcome holding either
a vector or an EmbeddingProviderError, and EmbeddingGenerator maps every
failed or unconfigured outcome to the deterministic lexical fallback in one
place. Callers always receive a usable vector.

Usage:
    >>> from config import Config
    >>> from embeddings import EmbeddingGenerator
    >>> generator = EmbeddingGenerator(Config.load().embedding)
    >>> vector = await generator.embed("First day at the beach")
"""

import asyncio
import logging
import math
import ssl
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp
import certifi
import numpy as np

from config import EmbeddingConfig
from lexical import lexical_embedding

logger = logging.getLogger(__name__)

SOURCE_LEXICAL = "lexical"


class EmbeddingProviderError(Exception):
    """The embedding provider failed or returned no usable vector."""


class ProviderNotConfigured(EmbeddingProviderError):
    """No provider is configured (missing key or lexical-only mode)."""


@dataclass(frozen=True)
class EmbeddingOutcome:
    """Result of one provider call: a vector or the reason there is none."""

    vector: np.ndarray | None = None
    error: EmbeddingProviderError | None = None

    @property
    def ok(self) -> bool:
        return self.vector is not None and self.error is None

    @classmethod
    def success(cls, vector: np.ndarray) -> "EmbeddingOutcome":
        return cls(vector=vector)

    @classmethod
    def failure(cls, reason: str) -> "EmbeddingOutcome":
        return cls(error=EmbeddingProviderError(reason))


@dataclass(frozen=True)
class GeneratedEmbedding:
    """A generated vector and the path that produced it.

    Attributes:
        vector: float32 array of shape (dim,)
        source: Provider name, or 'lexical' for the fallback
    """

    vector: np.ndarray
    source: str

    @property
    def is_fallback(self) -> bool:
        return self.source == SOURCE_LEXICAL


class EmbeddingProvider(Protocol):
    """Anything that can embed a single text."""

    name: str

    async def embed(self, text: str) -> EmbeddingOutcome:
        ...


def normalize(vector: Any) -> np.ndarray | None:
    """L2-normalise a vector.

    Returns:
        float32 unit vector, or None if the input is empty, non-finite or
        has (near) zero magnitude
    """
    arr = np.asarray(vector, dtype=np.float64).ravel()
    if arr.size == 0 or not np.all(np.isfinite(arr)):
        return None
    magnitude = math.sqrt(float(np.dot(arr, arr)))
    if magnitude < 1e-12:
        return None
    return (arr / magnitude).astype(np.float32)


def _coerce_vector(raw: Any, dim: int) -> EmbeddingOutcome:
    """Validate a provider vector's shape and values."""
    if not isinstance(raw, (list, tuple, np.ndarray)):
        return EmbeddingOutcome.failure(f"embedding is {type(raw).__name__}, expected list")
    try:
        arr = np.asarray(raw, dtype=np.float64).ravel()
    except (TypeError, ValueError):
        return EmbeddingOutcome.failure("embedding contains non-numeric values")
    if arr.size != dim:
        return EmbeddingOutcome.failure(f"embedding has {arr.size} dims, expected {dim}")
    if not np.all(np.isfinite(arr)):
        return EmbeddingOutcome.failure("embedding contains non-finite values")
    return EmbeddingOutcome.success(arr)


def _ssl_context() -> ssl.SSLContext:
    return ssl.create_default_context(cafile=certifi.where())


class OpenAIEmbeddingProvider:
    """Hosted embeddings over HTTPS.

    Sends {model, input, dimensions} and expects
    {"data": [{"embedding": [...]}]}. Non-2xx responses, timeouts,
    transport errors and malformed bodies all become failed outcomes.
    """

    name = "openai"

    def __init__(self, config: EmbeddingConfig):
        self.config = config

    async def embed(self, text: str) -> EmbeddingOutcome:
        payload = {
            "model": self.config.model,
            "input": text,
            "dimensions": self.config.dim,
        }
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.config.api_url,
                    json=payload,
                    headers=headers,
                    ssl=_ssl_context(),
                ) as resp:
                    if resp.status >= 300:
                        body = await resp.text()
                        return EmbeddingOutcome.failure(
                            f"HTTP {resp.status}: {body[:200]}"
                        )
                    data = await resp.json(content_type=None)
        except asyncio.TimeoutError:
            return EmbeddingOutcome.failure(
                f"timeout after {self.config.timeout_seconds:.1f}s"
            )
        except aiohttp.ClientError as e:
            return EmbeddingOutcome.failure(f"{type(e).__name__}: {e}")
        except ValueError as e:
            return EmbeddingOutcome.failure(f"malformed response body: {e}")

        try:
            raw = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError):
            return EmbeddingOutcome.failure("response has no data[0].embedding")
        return _coerce_vector(raw, self.config.dim)


class LocalEmbeddingProvider:
    """sentence-transformers model, lazily loaded on first use.

    Requires: pip install sentence-transformers
    """

    name = "local"

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        self._model = None

    def _load_model(self):
        """Lazily load the sentence-transformers model."""
        if self._model is None:
            logger.info("Loading embedding model: %s", self.config.local_model)
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.config.local_model)
            logger.info("Embedding model loaded | model=%s", self.config.local_model)
        return self._model

    def _encode(self, text: str) -> np.ndarray:
        model = self._load_model()
        return model.encode(text, convert_to_numpy=True, normalize_embeddings=True)

    async def embed(self, text: str) -> EmbeddingOutcome:
        try:
            raw = await asyncio.to_thread(self._encode, text)
        except ImportError:
            return EmbeddingOutcome.failure("sentence-transformers not installed")
        except Exception as e:
            return EmbeddingOutcome.failure(f"local model error: {type(e).__name__}: {e}")
        return _coerce_vector(raw, self.config.dim)


def build_provider(config: EmbeddingConfig) -> EmbeddingProvider | None:
    """Create the configured provider, or None for lexical-only operation."""
    if config.provider == "openai":
        if not config.api_key:
            logger.info("No embedding API key configured; using lexical embeddings")
            return None
        return OpenAIEmbeddingProvider(config)
    if config.provider == "local":
        return LocalEmbeddingProvider(config)
    return None


class EmbeddingGenerator:
    """Maps text to a normalised vector of fixed length.

    The configured provider is tried first; any failure falls back to the
    deterministic lexical embedding, so embed() never raises for provider
    problems.

    Attributes:
        config: Embedding settings
        dim: Output dimensionality
        provider: Primary provider, or None for lexical-only
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        provider: EmbeddingProvider | None = None,
    ):
        self.config = config
        self.dim = config.dim
        self.provider = provider if provider is not None else build_provider(config)

    def prepare(self, text: str) -> str:
        """Trim and cap input text."""
        text = (text or "").strip()
        if len(text) > self.config.max_input_chars:
            logger.debug(
                "Embedding input truncated | chars=%d max=%d",
                len(text), self.config.max_input_chars,
            )
            text = text[:self.config.max_input_chars]
        return text

    async def _call_provider(self, text: str) -> EmbeddingOutcome:
        if self.provider is None:
            return EmbeddingOutcome(error=ProviderNotConfigured("no provider configured"))
        if not text:
            return EmbeddingOutcome.failure("empty input")
        return await self.provider.embed(text)

    def _resolve(self, outcome: EmbeddingOutcome, text: str) -> GeneratedEmbedding:
        """Single decision point: provider vector or lexical fallback."""
        if outcome.ok:
            vector = normalize(outcome.vector)
            if vector is not None and vector.size == self.dim:
                return GeneratedEmbedding(vector=vector, source=self.provider.name)
            outcome = EmbeddingOutcome.failure("provider returned a degenerate vector")

        if isinstance(outcome.error, ProviderNotConfigured):
            logger.debug("Using lexical embedding | reason=%s", outcome.error)
        else:
            logger.warning(
                "Embedding provider failed, using lexical fallback | provider=%s reason=%s",
                getattr(self.provider, "name", "-"), outcome.error,
            )
        return GeneratedEmbedding(
            vector=lexical_embedding(text, self.dim),
            source=SOURCE_LEXICAL,
        )

    async def generate(self, text: str) -> GeneratedEmbedding:
        """Embed text and report which path produced the vector."""
        prepared = self.prepare(text)
        outcome = await self._call_provider(prepared)
        return self._resolve(outcome, prepared)

    async def embed(self, text: str) -> np.ndarray:
        """Embed text.

        Args:
            text: Caption or query text

        Returns:
            float32 array of shape (dim,)
        """
        return (await self.generate(text)).vector
