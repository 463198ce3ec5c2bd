"""Near-duplicate suppression in front of the vector store."""

import asyncio
import hashlib
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import numpy as np

from semantic_memory.core.constants import DEFAULT_DEDUP_THRESHOLD
from semantic_memory.core.events import EventKind, EventRecorder
from semantic_memory.core.logging import get_logger
from semantic_memory.domain.models import Memory, MemoryDraft, SearchFilters, SimilarityCandidate, SourceType, StoreResult
from semantic_memory.infrastructure.embeddings.cache import normalize_text
from semantic_memory.infrastructure.repositories.vector_store import VectorStore
from semantic_memory.infrastructure.vector.memory_backend import cosine_distances

logger = get_logger(__name__)


class DeduplicationFilter:
    """Checks for a near-identical record before every insert.

    The check is scoped to the draft's conversation, or to its knowledge
    source version for chunks. When the closest record's similarity exceeds
    ``threshold`` the insert is suppressed, the existing record's access
    count is bumped and its id is returned.

    Check-then-insert is not atomic: two concurrent inserts of near-identical
    content may both succeed. With ``strict_locking`` inserts of identical
    normalised content in the same scope are serialised, which closes the
    race for exact duplicates only.
    """

    def __init__(
        self,
        store: VectorStore,
        threshold: float = DEFAULT_DEDUP_THRESHOLD,
        strict_locking: bool = False,
        events: EventRecorder | None = None,
    ) -> None:
        self.store = store
        self.threshold = threshold
        self.strict_locking = strict_locking
        self.events = events or EventRecorder()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    @staticmethod
    def _scope(draft: MemoryDraft | Memory) -> tuple[str | None, SearchFilters]:
        if draft.source_type == SourceType.KNOWLEDGE_BASE and draft.source_id is not None:
            return None, SearchFilters(source_id=draft.source_id, source_version=draft.source_version)
        return draft.conversation_id, SearchFilters()

    async def find_duplicate(self, draft: MemoryDraft | Memory) -> SimilarityCandidate | None:
        conversation_id, filters = self._scope(draft)
        candidates = await self.store.query_similar(
            conversation_id,
            draft.embedding,
            top_k=1,
            filters=filters,
            embedding_model=draft.embedding_model,
        )
        if candidates and candidates[0].similarity > self.threshold:
            return candidates[0]
        return None

    async def merge(self, draft: MemoryDraft | Memory, duplicate: SimilarityCandidate) -> StoreResult:
        """Fold a suppressed draft into its existing duplicate."""
        await self.store.record_access(duplicate.memory.id)
        self.events.emit(
            EventKind.DUPLICATE_SUPPRESSED,
            existing_id=duplicate.memory.id,
            conversation_id=draft.conversation_id,
            source_id=draft.source_id,
            similarity=round(duplicate.similarity, 6),
        )
        return StoreResult(
            memory_id=duplicate.memory.id,
            created=False,
            conversation_id=draft.conversation_id,
            duplicate_similarity=duplicate.similarity,
        )

    @asynccontextmanager
    async def _guard(self, draft: MemoryDraft) -> AsyncIterator[None]:
        if not self.strict_locking:
            yield
            return
        conversation_id, filters = self._scope(draft)
        scope = f"{conversation_id}|{filters.source_id}|{filters.source_version}"
        key = hashlib.sha256(f"{scope}\x00{normalize_text(draft.content)}".encode()).hexdigest()
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    async def insert(self, draft: MemoryDraft) -> StoreResult:
        """Insert a draft unless a near-duplicate already exists."""
        async with self._guard(draft):
            duplicate = await self.find_duplicate(draft)
            if duplicate is not None:
                return await self.merge(draft, duplicate)
            memory_id = await self.store.insert(draft)

        logger.debug("Stored new memory", memory_id=memory_id, conversation_id=draft.conversation_id)
        return StoreResult(memory_id=memory_id, created=True, conversation_id=draft.conversation_id)

    async def partition(self, records: list[Memory]) -> tuple[list[int], dict[int, StoreResult]]:
        """Split a prepared batch into records to insert and records merged away.

        Each record is compared against the store and against the earlier
        records of the same batch that will be inserted.

        Returns:
            Indexes of records to insert, and a StoreResult naming the
            surviving record for every suppressed index.
        """
        keep: list[int] = []
        merged: dict[int, StoreResult] = {}
        for index, record in enumerate(records):
            duplicate = await self.find_duplicate(record)
            if duplicate is not None:
                merged[index] = await self.merge(record, duplicate)
                continue

            if keep:
                kept_matrix = np.array([records[i].embedding for i in keep], dtype=np.float64)
                similarity = 1.0 - cosine_distances(kept_matrix, np.array(record.embedding, dtype=np.float64))
                best = int(np.argmax(similarity))
                if similarity[best] > self.threshold:
                    self.events.emit(
                        EventKind.DUPLICATE_SUPPRESSED,
                        within_batch=True,
                        existing_id=records[keep[best]].id,
                        source_id=record.source_id,
                        similarity=round(float(similarity[best]), 6),
                    )
                    merged[index] = StoreResult(
                        memory_id=records[keep[best]].id,
                        created=False,
                        conversation_id=record.conversation_id,
                        duplicate_similarity=float(similarity[best]),
                    )
                    continue
            keep.append(index)
        return keep, merged
