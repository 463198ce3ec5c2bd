"""Search, ranking and ingestion result models."""

from datetime import datetime
from enum import Enum
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

from semantic_memory.core.base import ValidationErrorDetails
from semantic_memory.core.constants import DEFAULT_RANKING_WEIGHTS
from semantic_memory.core.errors import ValidationError

from .base import ensure_utc, normalize_tags
from .knowledge import KnowledgeSource
from .memory import Memory, SourceType


class SearchFilters(BaseModel):
    """Restrictions applied before the top-k cutoff.

    ``tags`` matches memories carrying any of the given tags. Archived
    memories, such as superseded chunks, are excluded unless asked for.
    """

    tags: list[str] = Field(default_factory=list)
    source_types: list[SourceType] = Field(default_factory=list)
    created_after: datetime | None = None
    created_before: datetime | None = None
    source_id: str | None = None
    source_version: str | None = None
    embedding_model: str | None = None
    include_archived: bool = False

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value):
        return normalize_tags(value)

    @field_validator("created_after", "created_before")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def check_window(self) -> Self:
        if self.created_after and self.created_before and self.created_after > self.created_before:
            raise ValueError("created_after must not be later than created_before")
        return self

    def matches(self, memory: Memory) -> bool:
        """Evaluate the filters against a record held in memory."""
        if not self.include_archived and memory.archived:
            return False
        if self.tags and not set(self.tags).intersection(memory.tags):
            return False
        if self.source_types and memory.source_type not in self.source_types:
            return False
        if self.created_after and memory.created_at < self.created_after:
            return False
        if self.created_before and memory.created_at > self.created_before:
            return False
        if self.source_id is not None and memory.source_id != self.source_id:
            return False
        if self.source_version is not None and memory.source_version != self.source_version:
            return False
        if self.embedding_model is not None and memory.embedding_model != self.embedding_model:
            return False
        return True


class RankingWeights(BaseModel):
    """Composite score weights. Normalised to sum to 1 before use."""

    similarity: float = DEFAULT_RANKING_WEIGHTS["similarity"]
    recency: float = DEFAULT_RANKING_WEIGHTS["recency"]
    frequency: float = DEFAULT_RANKING_WEIGHTS["frequency"]
    importance: float = DEFAULT_RANKING_WEIGHTS["importance"]

    def normalized(self) -> "RankingWeights":
        """Scale the weights so they sum to 1.

        Raises:
            ValidationError: If a weight is negative or every weight is zero.
        """
        values = self.model_dump()
        negative = [name for name, value in values.items() if value < 0]
        total = sum(values.values())
        if negative or total <= 0:
            raise ValidationError(
                message="Ranking weights must be non-negative and not all zero",
                details=ValidationErrorDetails(
                    source="domain.models.search",
                    operation="normalize_weights",
                    field=negative[0] if negative else None,
                    actual_value=values,
                ),
            )
        if abs(total - 1.0) < 1e-9:
            return self
        return RankingWeights(**{name: value / total for name, value in values.items()})


class SimilarityCandidate(BaseModel):
    """A record returned by a similarity query."""

    memory: Memory
    distance: float
    similarity: float = Field(ge=0.0, le=1.0)


class ScoreBreakdown(BaseModel):
    similarity: float
    recency: float
    frequency: float
    importance: float
    composite: float


class RankedMemory(BaseModel):
    """A search hit with its composite score."""

    memory: Memory
    similarity: float
    score: float
    breakdown: ScoreBreakdown

    @property
    def id(self) -> str:
        return self.memory.id


class StoreResult(BaseModel):
    """Outcome of a store call. ``created`` is False when merged into a duplicate."""

    memory_id: str
    created: bool
    conversation_id: str | None = None
    duplicate_similarity: float | None = None

    @property
    def merged(self) -> bool:
        return not self.created


class IndexAction(str, Enum):
    """What an index or refresh call did."""

    INDEXED = "indexed"
    REINDEXED = "reindexed"
    RESUMED = "resumed"
    SKIPPED = "skipped"


class IndexReport(BaseModel):
    source: KnowledgeSource
    action: IndexAction
    chunks_created: int = 0
    chunks_total: int = 0
    chunks_superseded: int = 0
    duplicates_suppressed: int = 0
