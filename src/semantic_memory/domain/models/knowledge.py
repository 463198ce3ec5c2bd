"""Knowledge source models and their indexing lifecycle."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from .base import Metadata, utc_now


class SourceStatus(str, Enum):
    """Indexing state of a knowledge source."""

    PENDING = "pending"
    INDEXING = "indexing"
    INDEXED = "indexed"
    FAILED = "failed"
    STALE = "stale"


SOURCE_TRANSITIONS: dict[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.PENDING: frozenset({SourceStatus.INDEXING}),
    SourceStatus.INDEXING: frozenset({SourceStatus.INDEXED, SourceStatus.FAILED}),
    SourceStatus.INDEXED: frozenset({SourceStatus.STALE, SourceStatus.INDEXING}),
    # A failed job resumes, or its source changed underneath it
    SourceStatus.FAILED: frozenset({SourceStatus.INDEXING, SourceStatus.STALE}),
    SourceStatus.STALE: frozenset({SourceStatus.INDEXING}),
}


def can_transition(current: SourceStatus, target: SourceStatus) -> bool:
    return target in SOURCE_TRANSITIONS[current]


class KnowledgeSource(BaseModel):
    """An external document tracked for change detection.

    ``content_hash`` identifies the current content version; a change is
    detected only by a hash mismatch. ``chunk_count`` is the number of
    chunks committed for that version, which is also the resume point of a
    failed job.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    locator: str
    content_hash: str | None = None
    previous_hash: str | None = None
    # Digest of content hash and chunking parameters; tags the chunks of this version
    index_version: str | None = None
    status: SourceStatus = SourceStatus.PENDING
    chunk_count: int = Field(default=0, ge=0)
    # Chunks the current version produces; None until first chunked
    expected_chunks: int | None = None
    chunk_size_tokens: int = Field(gt=0)
    overlap_tokens: int = Field(ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    indexed_at: datetime | None = None
    last_checked_at: datetime | None = None
    last_error: str | None = None
    metadata: Metadata = Field(default_factory=dict)

    @property
    def is_resumable(self) -> bool:
        # An interrupted run is left in indexing; both resume from chunk_count
        return self.status in (SourceStatus.FAILED, SourceStatus.INDEXING) and self.content_hash is not None
