"""In-process backend using numpy for exact cosine search."""

from datetime import UTC, datetime
from typing import Any

import numpy as np

from semantic_memory.core.base import DatabaseErrorDetails, ErrorCode
from semantic_memory.core.errors import DatastoreError
from semantic_memory.domain.models import Conversation, KnowledgeSource, Memory, SearchFilters, SourceStatus

# Distances closer than this are treated as equal so ties fall back to id order
_DISTANCE_DECIMALS = 12


def cosine_distances(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Cosine distance from ``vector`` to each row; zero vectors have distance 1."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
    dots = matrix @ vector
    similarity = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    return 1.0 - np.clip(similarity, -1.0, 1.0)


class InMemoryVectorBackend:
    """Keeps every record in dictionaries.

    Each method completes without awaiting, so under asyncio every
    operation is atomic. Records are copied in and out so callers never
    share state with the store.
    """

    name = "memory"

    def __init__(self) -> None:
        self._memories: dict[str, Memory] = {}
        self._sources: dict[str, KnowledgeSource] = {}
        self._conversations: dict[str, Conversation] = {}

    async def ensure_schema(self, dimensions: int | None = None) -> None:
        return None

    async def insert_memories(self, memories: list[Memory]) -> None:
        ids = [memory.id for memory in memories]
        duplicates = [memory_id for memory_id in ids if memory_id in self._memories]
        if duplicates or len(set(ids)) != len(ids):
            # Nothing is written unless every record can be
            raise DatastoreError(
                message=f"Duplicate memory id in batch: {(duplicates or ids)[0]}",
                details=DatabaseErrorDetails(
                    source="memory_backend",
                    operation="insert_memories",
                    service_name=self.name,
                    query_type="insert",
                ),
                code=ErrorCode.DB_VALIDATION,
            )
        for memory in memories:
            self._memories[memory.id] = memory.model_copy(deep=True)

    async def get_memory(self, memory_id: str) -> Memory | None:
        memory = self._memories.get(memory_id)
        return memory.model_copy(deep=True) if memory else None

    async def query_similar(
        self,
        vector: list[float],
        top_k: int,
        conversation_id: str | None,
        filters: SearchFilters,
    ) -> list[tuple[Memory, float]]:
        candidates = [
            memory
            for memory in self._memories.values()
            if (conversation_id is None or memory.conversation_id == conversation_id)
            and len(memory.embedding) == len(vector)
            and filters.matches(memory)
        ]
        if not candidates:
            return []

        matrix = np.array([memory.embedding for memory in candidates], dtype=np.float64)
        distances = cosine_distances(matrix, np.array(vector, dtype=np.float64))
        ranked = sorted(
            zip(candidates, distances.tolist(), strict=True),
            key=lambda pair: (round(pair[1], _DISTANCE_DECIMALS), pair[0].id),
        )
        return [(memory.model_copy(deep=True), distance) for memory, distance in ranked[:top_k]]

    async def update_memory(self, memory_id: str, changes: dict[str, Any]) -> Memory | None:
        memory = self._memories.get(memory_id)
        if memory is None:
            return None
        updated = memory.model_copy(update=changes, deep=True)
        # Re-validate so bad values never reach the store
        self._memories[memory_id] = type(memory).model_validate(updated.model_dump())
        return self._memories[memory_id].model_copy(deep=True)

    async def increment_access(self, memory_id: str, accessed_at: float) -> Memory | None:
        memory = self._memories.get(memory_id)
        if memory is None:
            return None
        return await self.update_memory(
            memory_id,
            {
                "access_count": memory.access_count + 1,
                "last_accessed_at": datetime.fromtimestamp(accessed_at, UTC),
            },
        )

    async def delete_memories(self, memory_ids: list[str]) -> int:
        removed = 0
        for memory_id in memory_ids:
            if self._memories.pop(memory_id, None) is not None:
                removed += 1
        return removed

    async def list_memories(
        self,
        conversation_id: str | None = None,
        after_id: str | None = None,
        limit: int = 500,
    ) -> list[Memory]:
        selected = sorted(
            (
                memory
                for memory in self._memories.values()
                if (conversation_id is None or memory.conversation_id == conversation_id)
                and (after_id is None or memory.id > after_id)
            ),
            key=lambda memory: memory.id,
        )
        return [memory.model_copy(deep=True) for memory in selected[:limit]]

    async def count_memories(self, conversation_id: str) -> int:
        return sum(1 for memory in self._memories.values() if memory.conversation_id == conversation_id)

    async def count_chunks(self, source_id: str, source_version: str) -> int:
        return sum(
            1
            for memory in self._memories.values()
            if memory.source_id == source_id and memory.source_version == source_version and not memory.archived
        )

    async def supersede_chunks(self, source_id: str, current_version: str, retain: bool) -> int:
        stale = [
            memory
            for memory in self._memories.values()
            if memory.source_id == source_id
            and memory.source_version != current_version
            and memory.superseded_by is None
        ]
        for memory in stale:
            if retain:
                self._memories[memory.id] = memory.model_copy(
                    update={"archived": True, "superseded_by": current_version}
                )
            else:
                del self._memories[memory.id]
        return len(stale)

    async def save_source(self, source: KnowledgeSource) -> None:
        self._sources[source.id] = source.model_copy(deep=True)

    async def get_source(self, source_id: str) -> KnowledgeSource | None:
        source = self._sources.get(source_id)
        return source.model_copy(deep=True) if source else None

    async def find_source(self, locator: str) -> KnowledgeSource | None:
        for source in self._sources.values():
            if source.locator == locator:
                return source.model_copy(deep=True)
        return None

    async def list_sources(self, status: SourceStatus | None = None) -> list[KnowledgeSource]:
        return [
            source.model_copy(deep=True)
            for source in sorted(self._sources.values(), key=lambda s: s.created_at)
            if status is None or source.status == status
        ]

    async def save_conversation(self, conversation: Conversation) -> None:
        self._conversations[conversation.id] = conversation.model_copy(deep=True)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def list_conversations(self) -> list[Conversation]:
        return [
            conversation.model_copy(deep=True)
            for conversation in sorted(self._conversations.values(), key=lambda c: c.created_at)
        ]

    async def increment_memory_count(self, conversation_id: str, delta: int = 1) -> int | None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return None
        conversation.memory_count = max(0, conversation.memory_count + delta)
        return conversation.memory_count

    async def set_memory_count(self, conversation_id: str, count: int) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is not None:
            conversation.memory_count = count

    async def health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "backend": self.name,
            "memories": len(self._memories),
            "sources": len(self._sources),
            "conversations": len(self._conversations),
        }

    async def close(self) -> None:
        return None
