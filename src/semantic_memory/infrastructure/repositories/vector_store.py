"""Vector store: the single owner of persisted memory, chunk and source state."""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any, TypeVar
from uuid import uuid4

from neo4j.exceptions import ServiceUnavailable, SessionExpired

from semantic_memory.core.base import (
    ApplicationError,
    DatabaseErrorDetails,
    ErrorCode,
    ValidationErrorDetails,
)
from semantic_memory.core.errors import DatastoreError, ValidationError
from semantic_memory.core.events import EventKind, EventRecorder
from semantic_memory.core.logging import get_logger
from semantic_memory.domain.models import (
    Conversation,
    KnowledgeSource,
    Memory,
    MemoryDraft,
    MemoryPatch,
    SearchFilters,
    SimilarityCandidate,
    SourceStatus,
    memory_from_record,
    utc_now,
)
from semantic_memory.infrastructure.embeddings.dimensions import ModelDimensionRegistry
from semantic_memory.infrastructure.vector.base import VectorBackend

logger = get_logger(__name__)

T = TypeVar("T")

_CONNECTION_ERRORS = (ServiceUnavailable, SessionExpired, ConnectionError)


def similarity_from_distance(distance: float) -> float:
    """Similarity reported to callers: ``1 - distance`` clamped to [0, 1]."""
    return min(1.0, max(0.0, 1.0 - distance))


class VectorStore:
    """Drives a datastore backend through a bounded pool.

    At most ``pool_size`` backend calls run at once and each one is bounded
    by ``query_timeout``. Timeouts and driver failures surface as
    ``DatastoreError``; a missing record is ``None``, never an error.
    """

    def __init__(
        self,
        backend: VectorBackend,
        dimensions: ModelDimensionRegistry | None = None,
        pool_size: int = 16,
        query_timeout: float = 10.0,
        events: EventRecorder | None = None,
    ) -> None:
        self.backend = backend
        self.dimensions = dimensions or ModelDimensionRegistry()
        self.pool_size = pool_size
        self.query_timeout = query_timeout
        self.events = events or EventRecorder()
        self._pool = asyncio.Semaphore(pool_size)

    async def _run(self, operation: str, call: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run one backend call inside the pool and the query time budget."""
        async with self._pool:
            try:
                async with asyncio.timeout(self.query_timeout):
                    return await call(*args, **kwargs)
            except ApplicationError:
                raise
            except TimeoutError as e:
                raise DatastoreError(
                    message=f"Datastore {operation} exceeded {self.query_timeout}s",
                    details=self._details(operation),
                    code=ErrorCode.DB_TIMEOUT,
                ) from e
            except _CONNECTION_ERRORS as e:
                raise DatastoreError(
                    message=f"Datastore connection failed during {operation}: {e!s}",
                    details=self._details(operation),
                    code=ErrorCode.DB_CONNECTION,
                ) from e
            except Exception as e:
                raise DatastoreError(
                    message=f"Datastore {operation} failed: {e!s}",
                    details=self._details(operation),
                ) from e

    def _details(self, operation: str) -> DatabaseErrorDetails:
        return DatabaseErrorDetails(
            source="vector_store",
            operation=operation,
            service_name=self.backend.name,
            query_type=operation,
            table="Memory",
        )

    async def ensure_schema(self, dimensions: int | None = None) -> None:
        await self._run("ensure_schema", self.backend.ensure_schema, dimensions)

    # Memories

    def prepare(self, draft: MemoryDraft | Memory) -> Memory:
        """Assign id and timestamps and check the embedding dimension.

        Raises:
            ValidationError: If the embedding does not match its model's dimension
        """
        if isinstance(draft, Memory):
            memory = draft
        else:
            memory = memory_from_record(
                {**draft.model_dump(), "id": str(uuid4()), "created_at": utc_now()},
            )
        if not memory.embedding:
            raise ValidationError(
                message="Memory embedding must not be empty",
                details=ValidationErrorDetails(source="vector_store", operation="prepare", field="embedding"),
            )
        self.dimensions.check(memory.embedding_model, memory.embedding, operation="insert")
        return memory

    async def insert(self, draft: MemoryDraft | Memory) -> str:
        memory = self.prepare(draft)
        await self._run("insert", self.backend.insert_memories, [memory])
        return memory.id

    async def insert_batch(self, drafts: Sequence[MemoryDraft | Memory]) -> list[str]:
        """Insert every record or none of them.

        All records are validated before anything is written, and the backend
        writes the batch in one transaction.
        """
        memories = [self.prepare(draft) for draft in drafts]
        if not memories:
            return []
        await self._run("insert_batch", self.backend.insert_memories, memories)
        return [memory.id for memory in memories]

    async def get(self, memory_id: str) -> Memory | None:
        return await self._run("get", self.backend.get_memory, memory_id)

    async def query_similar(
        self,
        conversation_id: str | None,
        query_vector: list[float],
        top_k: int,
        filters: SearchFilters | None = None,
        embedding_model: str | None = None,
    ) -> list[SimilarityCandidate]:
        """Up to ``top_k`` records by ascending cosine distance.

        ``conversation_id=None`` searches across every conversation. Filters
        are applied before the cutoff.
        """
        if top_k < 1:
            raise ValidationError(
                message="top_k must be at least 1",
                details=ValidationErrorDetails(
                    source="vector_store",
                    operation="query_similar",
                    field="top_k",
                    actual_value=top_k,
                ),
            )
        if not query_vector:
            raise ValidationError(
                message="Query vector must not be empty",
                details=ValidationErrorDetails(source="vector_store", operation="query_similar", field="query_vector"),
            )

        filters = filters or SearchFilters()
        if embedding_model is not None:
            self.dimensions.check(embedding_model, query_vector, operation="query_similar")
            filters = filters.model_copy(update={"embedding_model": embedding_model})

        rows = await self._run(
            "query_similar",
            self.backend.query_similar,
            query_vector,
            top_k,
            conversation_id,
            filters,
        )
        return [
            SimilarityCandidate(memory=memory, distance=distance, similarity=similarity_from_distance(distance))
            for memory, distance in rows
        ]

    async def update_metadata(self, memory_id: str, patch: dict[str, Any] | MemoryPatch) -> Memory | None:
        """Apply a partial update restricted to the mutable fields.

        Returns:
            The updated memory, or None when no memory has that id

        Raises:
            ValidationError: If the patch touches content, embedding or any
                other immutable field
        """
        parsed = patch if isinstance(patch, MemoryPatch) else MemoryPatch.parse(patch)
        changes = parsed.changes()
        if not changes:
            return await self.get(memory_id)
        return await self._run("update_metadata", self.backend.update_memory, memory_id, changes)

    async def record_access(self, memory_id: str, at: datetime | None = None) -> Memory | None:
        accessed_at = (at or utc_now()).timestamp()
        memory = await self._run("record_access", self.backend.increment_access, memory_id, accessed_at)
        if memory is not None:
            self.events.emit(EventKind.MEMORY_ACCESSED, memory_id=memory_id, access_count=memory.access_count)
        return memory

    async def delete(self, memory_ids: list[str]) -> int:
        return await self._run("delete", self.backend.delete_memories, memory_ids)

    async def count_memories(self, conversation_id: str) -> int:
        return await self._run("count_memories", self.backend.count_memories, conversation_id)

    async def iter_memories(self, conversation_id: str | None = None, page_size: int = 500) -> AsyncIterator[Memory]:
        """Page through memories in id order without holding a connection between pages."""
        after_id: str | None = None
        while True:
            page = await self._run(
                "list_memories",
                self.backend.list_memories,
                conversation_id,
                after_id,
                page_size,
            )
            for memory in page:
                yield memory
            if len(page) < page_size:
                return
            after_id = page[-1].id

    # Knowledge chunks and sources

    async def count_chunks(self, source_id: str, source_version: str) -> int:
        return await self._run("count_chunks", self.backend.count_chunks, source_id, source_version)

    async def supersede_chunks(self, source_id: str, current_version: str, retain: bool = True) -> int:
        """Retire chunks from every version of a source except ``current_version``."""
        count = await self._run(
            "supersede_chunks",
            self.backend.supersede_chunks,
            source_id,
            current_version,
            retain,
        )
        if count:
            self.events.emit(
                EventKind.CHUNKS_SUPERSEDED,
                source_id=source_id,
                current_version=current_version,
                chunks=count,
                retained=retain,
            )
        return count

    async def save_source(self, source: KnowledgeSource) -> None:
        await self._run("save_source", self.backend.save_source, source)

    async def get_source(self, source_id: str) -> KnowledgeSource | None:
        return await self._run("get_source", self.backend.get_source, source_id)

    async def find_source(self, locator: str) -> KnowledgeSource | None:
        return await self._run("find_source", self.backend.find_source, locator)

    async def list_sources(self, status: SourceStatus | None = None) -> list[KnowledgeSource]:
        return await self._run("list_sources", self.backend.list_sources, status)

    # Conversation persistence, on behalf of the registry

    async def save_conversation(self, conversation: Conversation) -> None:
        await self._run("save_conversation", self.backend.save_conversation, conversation)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return await self._run("get_conversation", self.backend.get_conversation, conversation_id)

    async def list_conversations(self) -> list[Conversation]:
        return await self._run("list_conversations", self.backend.list_conversations)

    async def increment_memory_count(self, conversation_id: str, delta: int = 1) -> int | None:
        return await self._run("increment_memory_count", self.backend.increment_memory_count, conversation_id, delta)

    async def set_memory_count(self, conversation_id: str, count: int) -> None:
        await self._run("set_memory_count", self.backend.set_memory_count, conversation_id, count)

    async def health(self) -> dict[str, Any]:
        started = time.perf_counter()
        status = await self._run("health", self.backend.health)
        status["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
        return status

    async def close(self) -> None:
        await self.backend.close()
