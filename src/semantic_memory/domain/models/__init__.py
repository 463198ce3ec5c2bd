"""Domain models for the semantic memory engine."""

from .base import Metadata, MetadataValue, normalize_tags, parse_model, utc_now, validate_metadata
from .conversation import Conversation, ConversationState
from .knowledge import KnowledgeSource, SourceStatus, can_transition
from .memory import (
    MUTABLE_FIELDS,
    Chunk,
    Memory,
    MemoryDraft,
    MemoryPatch,
    SourceType,
    memory_from_record,
)
from .search import (
    IndexAction,
    IndexReport,
    RankedMemory,
    RankingWeights,
    ScoreBreakdown,
    SearchFilters,
    SimilarityCandidate,
    StoreResult,
)

__all__ = [
    "MUTABLE_FIELDS",
    "Chunk",
    # Conversation
    "Conversation",
    "ConversationState",
    "IndexAction",
    "IndexReport",
    # Knowledge
    "KnowledgeSource",
    # Memory
    "Memory",
    "MemoryDraft",
    "MemoryPatch",
    "Metadata",
    "MetadataValue",
    # Search
    "RankedMemory",
    "RankingWeights",
    "ScoreBreakdown",
    "SearchFilters",
    "SimilarityCandidate",
    "SourceStatus",
    "SourceType",
    "StoreResult",
    "can_transition",
    "memory_from_record",
    "normalize_tags",
    "parse_model",
    "utc_now",
    "validate_metadata",
]
