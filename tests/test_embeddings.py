"""Tests for embedding providers and the generator's fallback."""

import asyncio

import aiohttp
import numpy as np
import pytest

import embeddings
from config import EmbeddingConfig
from embeddings import (
    EmbeddingGenerator,
    EmbeddingOutcome,
    LocalEmbeddingProvider,
    OpenAIEmbeddingProvider,
    build_provider,
    normalize,
)
from lexical import lexical_embedding

DIM = 384


class StaticProvider:
    """Provider returning a fixed outcome."""

    name = "static"

    def __init__(self, outcome: EmbeddingOutcome):
        self.outcome = outcome
        self.calls: list[str] = []

    async def embed(self, text: str) -> EmbeddingOutcome:
        self.calls.append(text)
        return self.outcome


class FakeResponse:
    def __init__(self, status: int = 200, payload=None, body: str = ""):
        self.status = status
        self.payload = payload
        self.body = body

    async def json(self, content_type=None):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    async def text(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession."""

    last: "FakeSession | None" = None

    def __init__(self, response: FakeResponse | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.posts: list[tuple[str, dict]] = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def _install_session(monkeypatch, response=None, error=None) -> FakeSession:
    session = FakeSession(response=response, error=error)
    monkeypatch.setattr(embeddings.aiohttp, "ClientSession", lambda **kwargs: session)
    return session


@pytest.fixture
def openai_config() -> EmbeddingConfig:
    return EmbeddingConfig(provider="openai", api_key="sk-test", dim=DIM, timeout_seconds=2.0)


class TestNormalize:
    """Tests for normalize()."""

    def test_unit_length(self):
        vec = normalize([3.0, 4.0])
        assert vec.tolist() == pytest.approx([0.6, 0.8])

    def test_zero_vector(self):
        assert normalize([0.0, 0.0, 0.0]) is None

    def test_non_finite(self):
        assert normalize([1.0, float("nan")]) is None
        assert normalize([1.0, float("inf")]) is None

    def test_empty(self):
        assert normalize([]) is None


class TestBuildProvider:
    """Tests for provider selection."""

    def test_openai_with_key(self, openai_config):
        assert isinstance(build_provider(openai_config), OpenAIEmbeddingProvider)

    def test_openai_without_key(self):
        assert build_provider(EmbeddingConfig(provider="openai", api_key="")) is None

    def test_local(self):
        assert isinstance(build_provider(EmbeddingConfig(provider="local")), LocalEmbeddingProvider)

    def test_lexical(self):
        assert build_provider(EmbeddingConfig(provider="lexical")) is None


class TestOpenAIProvider:
    """Tests for the hosted embeddings call."""

    @pytest.mark.asyncio
    async def test_success(self, monkeypatch, openai_config):
        vector = [0.5] * DIM
        session = _install_session(
            monkeypatch, response=FakeResponse(payload={"data": [{"embedding": vector}]})
        )

        outcome = await OpenAIEmbeddingProvider(openai_config).embed("beach day")

        assert outcome.ok
        assert outcome.vector.shape == (DIM,)
        url, kwargs = session.posts[0]
        assert url == openai_config.api_url
        assert kwargs["json"] == {
            "model": "text-embedding-3-small",
            "input": "beach day",
            "dimensions": DIM,
        }
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_http_error(self, monkeypatch, openai_config):
        _install_session(monkeypatch, response=FakeResponse(status=401, body="bad key"))
        outcome = await OpenAIEmbeddingProvider(openai_config).embed("beach")
        assert not outcome.ok
        assert "401" in str(outcome.error)

    @pytest.mark.asyncio
    async def test_missing_embedding(self, monkeypatch, openai_config):
        _install_session(monkeypatch, response=FakeResponse(payload={"data": []}))
        outcome = await OpenAIEmbeddingProvider(openai_config).embed("beach")
        assert not outcome.ok

    @pytest.mark.asyncio
    async def test_wrong_dimensionality(self, monkeypatch, openai_config):
        _install_session(
            monkeypatch, response=FakeResponse(payload={"data": [{"embedding": [0.1] * 1536}]})
        )
        outcome = await OpenAIEmbeddingProvider(openai_config).embed("beach")
        assert not outcome.ok
        assert "1536" in str(outcome.error)

    @pytest.mark.asyncio
    async def test_malformed_json(self, monkeypatch, openai_config):
        _install_session(monkeypatch, response=FakeResponse(payload=ValueError("not json")))
        outcome = await OpenAIEmbeddingProvider(openai_config).embed("beach")
        assert not outcome.ok

    @pytest.mark.asyncio
    async def test_connection_error(self, monkeypatch, openai_config):
        _install_session(monkeypatch, error=aiohttp.ClientConnectionError("refused"))
        outcome = await OpenAIEmbeddingProvider(openai_config).embed("beach")
        assert not outcome.ok

    @pytest.mark.asyncio
    async def test_timeout(self, monkeypatch, openai_config):
        _install_session(monkeypatch, error=asyncio.TimeoutError())
        outcome = await OpenAIEmbeddingProvider(openai_config).embed("beach")
        assert not outcome.ok
        assert "timeout" in str(outcome.error)


class TestEmbeddingGenerator:
    """Tests for EmbeddingGenerator."""

    @pytest.mark.asyncio
    async def test_lexical_only(self, generator):
        result = await generator.generate("First day at the beach")
        assert result.is_fallback
        assert np.array_equal(result.vector, lexical_embedding("First day at the beach", DIM))

    @pytest.mark.asyncio
    async def test_deterministic_fallback(self, generator):
        a = await generator.embed("Building sandcastles with Dad")
        b = await generator.embed("Building sandcastles with Dad")
        assert a.tobytes() == b.tobytes()

    @pytest.mark.asyncio
    async def test_provider_vector_renormalized(self, lexical_config):
        provider = StaticProvider(EmbeddingOutcome.success(np.full(DIM, 3.0)))
        generator = EmbeddingGenerator(lexical_config, provider=provider)

        result = await generator.generate("beach")

        assert result.source == "static"
        assert np.linalg.norm(result.vector) == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.asyncio
    async def test_provider_failure_falls_back(self, lexical_config):
        provider = StaticProvider(EmbeddingOutcome.failure("HTTP 500"))
        generator = EmbeddingGenerator(lexical_config, provider=provider)

        result = await generator.generate("beach")

        assert result.is_fallback
        assert np.array_equal(result.vector, lexical_embedding("beach", DIM))

    @pytest.mark.asyncio
    async def test_zero_vector_from_provider_falls_back(self, lexical_config):
        provider = StaticProvider(EmbeddingOutcome.success(np.zeros(DIM)))
        generator = EmbeddingGenerator(lexical_config, provider=provider)
        assert (await generator.generate("beach")).is_fallback

    @pytest.mark.asyncio
    async def test_wrong_size_from_provider_falls_back(self, lexical_config):
        provider = StaticProvider(EmbeddingOutcome.success(np.ones(10)))
        generator = EmbeddingGenerator(lexical_config, provider=provider)
        result = await generator.generate("beach")
        assert result.is_fallback
        assert result.vector.shape == (DIM,)

    @pytest.mark.asyncio
    async def test_empty_input_skips_provider(self, lexical_config):
        """Empty text goes straight to the fallback, with no NaN or Inf."""
        provider = StaticProvider(EmbeddingOutcome.success(np.ones(DIM)))
        generator = EmbeddingGenerator(lexical_config, provider=provider)

        vec = await generator.embed("")

        assert provider.calls == []
        assert vec.shape == (DIM,)
        assert np.all(np.isfinite(vec))

    @pytest.mark.asyncio
    async def test_input_capped(self):
        config = EmbeddingConfig(provider="lexical", dim=DIM, max_input_chars=10)
        provider = StaticProvider(EmbeddingOutcome.success(np.ones(DIM)))
        generator = EmbeddingGenerator(config, provider=provider)

        await generator.embed("  " + "x" * 50 + "  ")

        assert provider.calls == ["x" * 10]

    @pytest.mark.asyncio
    async def test_http_failure_end_to_end(self, monkeypatch, openai_config):
        """A failing hosted call is recovered locally, never raised."""
        _install_session(monkeypatch, response=FakeResponse(status=503, body="down"))
        generator = EmbeddingGenerator(openai_config)

        result = await generator.generate("Birthday party with friends")

        assert result.is_fallback
        assert np.linalg.norm(result.vector) == pytest.approx(1.0, abs=1e-5)
