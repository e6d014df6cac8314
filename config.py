"""Configuration management for the FableForge memory recall service.

This module provides centralized configuration for the Memory Jar
embedding, storage and recall components. All settings are loaded from
environment variables with sensible defaults.

Environment Variables:
    Embeddings:
        EMBEDDING_PROVIDER: 'openai' (hosted), 'local' (sentence-transformers)
            or 'lexical' (deterministic fallback only)
        OPENAI_API_KEY: API key for the hosted embedding endpoint
        EMBEDDING_API_URL: Embeddings endpoint URL
        EMBEDDING_MODEL: Hosted embedding model identifier
        LOCAL_EMBEDDING_MODEL: HuggingFace model for the local provider
        EMBEDDING_DIM: Vector dimensionality (must match stored vectors)
        EMBEDDING_TIMEOUT_SECONDS: Hosted call timeout
        EMBEDDING_MAX_INPUT_CHARS: Caption length cap before embedding

    Storage:
        STORE_BACKEND: 'sqlite' or 'chroma'
        DB_PATH: SQLite database file path
        VECTOR_DB_PATH: ChromaDB persistence directory

    Recall:
        RECALL_LIMIT: Default number of memories returned
        RECALL_MIN_SIMILARITY: Default cosine similarity threshold

    Optional Features:
        ENABLE_LOGFIRE: Enable Logfire/OpenTelemetry tracing

    Logging:
        LOG_DIR: Directory for log files
        LOG_LEVEL: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_BACKUP_COUNT: Number of rotated log files to keep
        LOG_MAX_BYTES: Max log file size in bytes (0 = time-based rotation)
        LOG_FORMAT: Log format ('text' or 'json' for structured logging)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

# Fallback layout needs room for the keyword table, hash buckets and features
MIN_EMBEDDING_DIM = 310

EMBEDDING_PROVIDERS = ("openai", "local", "lexical")
STORE_BACKENDS = ("sqlite", "chroma")


def _env(key: str, default: str = "") -> str:
    """Get string environment variable with optional default."""
    return os.environ.get(key, default)


def _env_int(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as integer
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer value for {key}: '{val}'")


def _env_float(key: str, default: float) -> float:
    """Get float environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as float
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Invalid float value for {key}: '{val}'")


def _env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable with default.

    Recognizes truthy values: '1', 'true', 'yes', 'on'
    Recognizes falsy values: '0', 'false', 'no', 'off'
    """
    val = os.environ.get(key, "").lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    return default


@dataclass(frozen=True)
class EmbeddingConfig:
    """Settings handed to the embedding generator at construction time.

    Attributes:
        provider: 'openai', 'local' or 'lexical'
        api_key: Bearer key for the hosted endpoint (empty = not configured)
        api_url: Hosted embeddings endpoint
        model: Hosted model identifier
        local_model: sentence-transformers model name
        dim: Output dimensionality
        timeout_seconds: Hosted call timeout
        max_input_chars: Input is truncated to this many characters
    """

    provider: str = "lexical"
    api_key: str = ""
    api_url: str = "https://api.openai.com/v1/embeddings"
    model: str = "text-embedding-3-small"
    local_model: str = "BAAI/bge-small-en-v1.5"
    dim: int = 384
    timeout_seconds: float = 10.0
    max_input_chars: int = 4000


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Use Config.load() to create an instance with values from the environment.

    Example:
        >>> config = Config.load()
        >>> if error := config.validate():
        ...     print(f"Config error: {error}")
    """

    # === Embeddings ===
    embedding_provider: str = "openai"  # EMBEDDING_PROVIDER
    openai_api_key: str = ""  # OPENAI_API_KEY - empty means fallback only
    embedding_api_url: str = "https://api.openai.com/v1/embeddings"  # EMBEDDING_API_URL
    embedding_model: str = "text-embedding-3-small"  # EMBEDDING_MODEL
    local_embedding_model: str = "BAAI/bge-small-en-v1.5"  # LOCAL_EMBEDDING_MODEL
    embedding_dim: int = 384  # EMBEDDING_DIM - changing this invalidates stored vectors
    embedding_timeout_seconds: float = 10.0  # EMBEDDING_TIMEOUT_SECONDS
    embedding_max_input_chars: int = 4000  # EMBEDDING_MAX_INPUT_CHARS

    # === Storage ===
    store_backend: str = "sqlite"  # STORE_BACKEND - 'sqlite' or 'chroma'
    db_path: Path = field(default_factory=lambda: Path("memories.db"))  # DB_PATH
    vector_db_path: Path = field(default_factory=lambda: Path("vectors"))  # VECTOR_DB_PATH

    # === Recall ===
    recall_limit: int = 5  # RECALL_LIMIT
    recall_min_similarity: float = 0.7  # RECALL_MIN_SIMILARITY

    # === Output Directories ===
    log_dir: Path = field(default_factory=lambda: Path("log"))  # LOG_DIR

    # === Logging Configuration ===
    log_level: str = "INFO"  # LOG_LEVEL - DEBUG, INFO, WARNING, ERROR
    log_backup_count: int = 30  # LOG_BACKUP_COUNT - Number of rotated logs to keep
    log_max_bytes: int = 0  # LOG_MAX_BYTES - Max file size (0 = time-based rotation)
    log_format: str = "text"  # LOG_FORMAT - 'text' or 'json' for structured logging

    # === Optional: Observability ===
    # Requires: pip install logfire
    enable_logfire: bool = False  # ENABLE_LOGFIRE - Enable distributed tracing
    logfire_token: str = ""  # LOGFIRE_TOKEN - Authentication token

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            embedding_provider=_env("EMBEDDING_PROVIDER", "openai").lower(),
            openai_api_key=_env("OPENAI_API_KEY"),
            embedding_api_url=_env("EMBEDDING_API_URL", "https://api.openai.com/v1/embeddings"),
            embedding_model=_env("EMBEDDING_MODEL", "text-embedding-3-small"),
            local_embedding_model=_env("LOCAL_EMBEDDING_MODEL", "BAAI/bge-small-en-v1.5"),
            embedding_dim=_env_int("EMBEDDING_DIM", 384),
            embedding_timeout_seconds=_env_float("EMBEDDING_TIMEOUT_SECONDS", 10.0),
            embedding_max_input_chars=_env_int("EMBEDDING_MAX_INPUT_CHARS", 4000),
            store_backend=_env("STORE_BACKEND", "sqlite").lower(),
            db_path=Path(_env("DB_PATH", "memories.db")),
            vector_db_path=Path(_env("VECTOR_DB_PATH", "vectors")),
            recall_limit=_env_int("RECALL_LIMIT", 5),
            recall_min_similarity=_env_float("RECALL_MIN_SIMILARITY", 0.7),
            log_dir=Path(_env("LOG_DIR", "log")),
            enable_logfire=_env_bool("ENABLE_LOGFIRE", False),
            logfire_token=_env("LOGFIRE_TOKEN"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_backup_count=_env_int("LOG_BACKUP_COUNT", 30),
            log_max_bytes=_env_int("LOG_MAX_BYTES", 0),
            log_format=_env("LOG_FORMAT", "text").lower(),
        )

    @property
    def embedding(self) -> EmbeddingConfig:
        """Explicit embedding settings for EmbeddingGenerator."""
        return EmbeddingConfig(
            provider=self.embedding_provider,
            api_key=self.openai_api_key,
            api_url=self.embedding_api_url,
            model=self.embedding_model,
            local_model=self.local_embedding_model,
            dim=self.embedding_dim,
            timeout_seconds=self.embedding_timeout_seconds,
            max_input_chars=self.embedding_max_input_chars,
        )

    def validate(self) -> str | None:
        """Validate configuration values.

        Returns:
            Error message string if invalid, None if valid.
        """
        if self.embedding_provider not in EMBEDDING_PROVIDERS:
            return (
                f"Invalid EMBEDDING_PROVIDER '{self.embedding_provider}' - "
                f"must be one of {', '.join(EMBEDDING_PROVIDERS)}"
            )
        if self.embedding_dim < MIN_EMBEDDING_DIM:
            return f"EMBEDDING_DIM must be at least {MIN_EMBEDDING_DIM}"
        if self.embedding_timeout_seconds <= 0:
            return "EMBEDDING_TIMEOUT_SECONDS must be positive"
        if self.embedding_max_input_chars <= 0:
            return "EMBEDDING_MAX_INPUT_CHARS must be positive"
        if self.store_backend not in STORE_BACKENDS:
            return f"Invalid STORE_BACKEND '{self.store_backend}' - must be 'sqlite' or 'chroma'"
        if self.recall_limit <= 0:
            return "RECALL_LIMIT must be positive"
        if not -1.0 <= self.recall_min_similarity <= 1.0:
            return "RECALL_MIN_SIMILARITY must be between -1 and 1"
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return f"Invalid LOG_LEVEL '{self.log_level}' - must be DEBUG, INFO, WARNING, ERROR, or CRITICAL"
        if self.log_format not in ("text", "json"):
            return f"Invalid LOG_FORMAT '{self.log_format}' - must be 'text' or 'json'"
        if self.log_backup_count < 0:
            return "LOG_BACKUP_COUNT must be non-negative"
        if self.log_max_bytes < 0:
            return "LOG_MAX_BYTES must be non-negative"
        return None
