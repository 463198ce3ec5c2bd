"""Memory and chunk domain models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from semantic_memory.core.base import ValidationErrorDetails
from semantic_memory.core.errors import ValidationError

from .base import Metadata, ensure_utc, normalize_tags, utc_now, validate_metadata


class SourceType(str, Enum):
    """Where a memory's content came from."""

    CONVERSATION = "conversation"
    WEB = "web"
    FILE = "file"
    KNOWLEDGE_BASE = "knowledge_base"


# Fields a stored memory may change after it is written
MUTABLE_FIELDS = frozenset(
    {
        "tags",
        "metadata",
        "relevance_score",
        "archived",
        "last_accessed_at",
        "access_count",
    }
)


class MemoryDraft(BaseModel):
    """A memory that has not been written yet; the store assigns id and timestamps."""

    conversation_id: str | None = None
    content: str = Field(min_length=1)
    embedding: list[float]
    embedding_model: str
    tags: list[str] = Field(default_factory=list)
    metadata: Metadata = Field(default_factory=dict)
    source_type: SourceType = SourceType.CONVERSATION
    source_id: str | None = None

    # Chunk provenance, set only for knowledge base content
    sequence: int | None = None
    token_count: int | None = None
    parent_chunk_id: str | None = None
    source_version: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        return normalize_tags(value)


class Memory(BaseModel):
    """A stored memory record.

    Content and embedding are write-once; only the fields in MUTABLE_FIELDS
    change after the record is persisted.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    conversation_id: str | None = None
    content: str
    embedding: list[float]
    embedding_model: str
    tags: list[str] = Field(default_factory=list)
    metadata: Metadata = Field(default_factory=dict)
    source_type: SourceType = SourceType.CONVERSATION
    source_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    last_accessed_at: datetime | None = None
    access_count: int = Field(default=0, ge=0)
    relevance_score: float = Field(default=1.0, ge=0.0, le=1.0)
    archived: bool = False

    sequence: int | None = None
    token_count: int | None = None
    parent_chunk_id: str | None = None
    source_version: str | None = None
    # Index version of the source that replaced this chunk
    superseded_by: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        return normalize_tags(value)

    @field_validator("created_at", "last_accessed_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    @property
    def is_chunk(self) -> bool:
        return self.source_type == SourceType.KNOWLEDGE_BASE and self.sequence is not None

    def __str__(self) -> str:
        return f"Memory(id={self.id[:8]}, content='{self.content[:40]}...')"


class Chunk(Memory):
    """A token-bounded slice of a knowledge source, stored like any memory."""

    source_type: SourceType = SourceType.KNOWLEDGE_BASE
    source_id: str  # type: ignore[assignment]
    sequence: int  # type: ignore[assignment]
    token_count: int  # type: ignore[assignment]
    source_version: str  # type: ignore[assignment]

    @classmethod
    def from_memory(cls, memory: Memory) -> "Chunk":
        return cls.model_validate(memory.model_dump())


class MemoryPatch(BaseModel):
    """Validated partial update restricted to MUTABLE_FIELDS."""

    model_config = ConfigDict(extra="forbid")

    tags: list[str] | None = None
    metadata: Metadata | None = None
    relevance_score: float | None = Field(default=None, ge=0.0, le=1.0)
    archived: bool | None = None
    last_accessed_at: datetime | None = None
    access_count: int | None = Field(default=None, ge=0)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str] | None:
        return None if value is None else normalize_tags(value)

    @classmethod
    def parse(cls, patch: dict[str, Any]) -> "MemoryPatch":
        """Validate a raw patch, rejecting any attempt to touch immutable fields.

        Raises:
            ValidationError: If the patch names an immutable or unknown field,
                or a value is invalid.
        """
        rejected = sorted(set(patch) - MUTABLE_FIELDS)
        if rejected:
            raise ValidationError(
                message=f"Cannot modify immutable or unknown fields: {', '.join(rejected)}",
                details=ValidationErrorDetails(
                    source="domain.models.memory",
                    operation="parse_patch",
                    field=rejected[0],
                    constraint=f"only {', '.join(sorted(MUTABLE_FIELDS))} may change",
                ),
            )
        values = dict(patch)
        if "metadata" in values:
            values["metadata"] = validate_metadata(values["metadata"])
        try:
            return cls.model_validate(values)
        except ValueError as e:
            raise ValidationError(
                message=f"Invalid memory patch: {e}",
                details=ValidationErrorDetails(
                    source="domain.models.memory",
                    operation="parse_patch",
                    actual_value=str(patch)[:200],
                ),
            ) from e

    def changes(self) -> dict[str, Any]:
        """Only the fields the caller actually set."""
        return self.model_dump(exclude_unset=True)


def memory_from_record(record: dict[str, Any]) -> Memory:
    """Rebuild the most specific model for a stored record."""
    memory = Memory.model_validate(record)
    return Chunk.from_memory(memory) if memory.is_chunk else memory
