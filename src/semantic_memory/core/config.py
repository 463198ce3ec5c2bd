"""Configuration management."""

from typing import Literal, Self

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_CHUNK_OVERLAP_TOKENS,
    DEFAULT_CHUNK_SIZE_TOKENS,
    DEFAULT_DEDUP_THRESHOLD,
    DEFAULT_HALF_LIFE_DAYS,
    DEFAULT_MODEL_DIMENSIONS,
    DEFAULT_RANKING_WEIGHTS,
)


class CacheConfig(BaseModel):
    """Embedding cache bounds."""

    capacity: int = Field(default=10_000, gt=0, description="Maximum number of cached embeddings")
    ttl_seconds: float = Field(default=3600.0, gt=0, description="Seconds an entry stays valid")


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker around the embedding service."""

    failure_threshold: int = Field(default=5, gt=0, description="Failures within the window that open the circuit")
    window_seconds: float = Field(default=60.0, gt=0, description="Rolling window for counting failures")
    cooldown_seconds: float = Field(default=30.0, ge=0, description="Time open before a probe is allowed")


class RetryConfig(BaseModel):
    """Retry policy for transient embedding failures."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=0.5, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=8.0, ge=0)


class ChunkingConfig(BaseModel):
    """Default token budgets for knowledge chunking."""

    chunk_size_tokens: int = Field(default=DEFAULT_CHUNK_SIZE_TOKENS, gt=0)
    overlap_tokens: int = Field(default=DEFAULT_CHUNK_OVERLAP_TOKENS, ge=0)

    @model_validator(mode="after")
    def check_overlap(self) -> Self:
        if self.overlap_tokens >= self.chunk_size_tokens:
            raise ValueError("overlap_tokens must be smaller than chunk_size_tokens")
        return self


class RankingConfig(BaseModel):
    """Composite ranking defaults."""

    similarity_weight: float = Field(default=DEFAULT_RANKING_WEIGHTS["similarity"], ge=0)
    recency_weight: float = Field(default=DEFAULT_RANKING_WEIGHTS["recency"], ge=0)
    frequency_weight: float = Field(default=DEFAULT_RANKING_WEIGHTS["frequency"], ge=0)
    importance_weight: float = Field(default=DEFAULT_RANKING_WEIGHTS["importance"], ge=0)
    half_life_days: float = Field(default=DEFAULT_HALF_LIFE_DAYS, gt=0)
    frequency_saturation: int = Field(default=100, gt=1, description="Access count at which frequency saturates")
    candidate_multiplier: int = Field(default=4, ge=1, description="Candidates fetched per requested result")


class DedupConfig(BaseModel):
    """Near-duplicate suppression."""

    threshold: float = Field(default=DEFAULT_DEDUP_THRESHOLD, gt=0, le=1)
    strict_locking: bool = Field(default=False, description="Serialise check-then-insert per content hash")


class TimeoutConfig(BaseModel):
    """Per-call time budgets in seconds."""

    embedding_seconds: float = Field(default=30.0, gt=0)
    datastore_seconds: float = Field(default=10.0, gt=0)
    fetch_seconds: float = Field(default=30.0, gt=0)
    operation_seconds: float = Field(default=120.0, gt=0)


class MaintenanceConfig(BaseModel):
    """Background job schedule."""

    enabled: bool = False
    relevance_refresh_minutes: int = Field(default=30, gt=0)
    reconcile_hours: int = Field(default=6, gt=0)
    change_detection_hours: int = Field(default=12, gt=0)
    cache_purge_minutes: int = Field(default=15, gt=0)


class Settings(BaseSettings):
    # Embedding service
    embedding_provider: Literal["ollama", "voyage"] = "ollama"
    embedding_model: str = "nomic-embed-text"
    embedding_dimensions: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_MODEL_DIMENSIONS))
    ollama_host: str = "http://127.0.0.1:11434"
    voyage_api_key: SecretStr = SecretStr("")

    # Datastore
    datastore: Literal["neo4j", "memory"] = "neo4j"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: SecretStr = SecretStr("password")
    neo4j_database: str | None = None
    pool_size: int = Field(default=16, gt=0, description="Datastore pool size and batch fan-out limit")

    # Knowledge sources
    retain_superseded_chunks: bool = True

    # App config
    debug: bool = False
    log_level: str = "INFO"

    cache: CacheConfig = Field(default_factory=CacheConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # Ignore extra fields in .env file
        env_nested_delimiter="__",  # Allows CACHE__CAPACITY=5000
    )


settings = Settings()
