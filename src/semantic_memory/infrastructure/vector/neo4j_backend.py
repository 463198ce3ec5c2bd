"""Neo4j backend with exact filtered cosine search."""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any, LiteralString

from neo4j import AsyncDriver, AsyncManagedTransaction, AsyncSession

from semantic_memory.core.base import ErrorLevel
from semantic_memory.core.decorators import with_error_handling, with_session
from semantic_memory.core.logging import get_logger
from semantic_memory.domain.models import (
    Conversation,
    KnowledgeSource,
    Memory,
    SearchFilters,
    SourceStatus,
    memory_from_record,
)
from semantic_memory.infrastructure.neo4j.filter_compiler import compile_search_filters
from semantic_memory.infrastructure.neo4j.queries import (
    ConversationQueries,
    MemoryQueries,
    SchemaQueries,
    SourceQueries,
)

logger = get_logger(__name__)

# Stored as JSON text so nested maps survive Neo4j's flat property model
_JSON_FIELDS = frozenset({"metadata"})


def to_properties(data: dict[str, Any]) -> dict[str, Any]:
    """Flatten a model dump into Neo4j property values."""
    props: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, datetime):
            props[key] = value.timestamp()
        elif isinstance(value, Enum):
            props[key] = value.value
        elif key in _JSON_FIELDS:
            props[key] = json.dumps(value, sort_keys=True)
        else:
            props[key] = value
    return props


def from_properties(props: dict[str, Any]) -> dict[str, Any]:
    """Inverse of ``to_properties``."""
    data = dict(props)
    for key, value in props.items():
        if key.endswith("_at") and isinstance(value, int | float):
            data[key] = datetime.fromtimestamp(value, UTC)
        elif key in _JSON_FIELDS and isinstance(value, str):
            data[key] = json.loads(value)
    return data


class Neo4jVectorBackend:
    """Persists memories, sources and conversations as Neo4j nodes.

    Similarity search is an exact scan ordered by cosine distance so that
    filters are always applied before the ``LIMIT``; the vector index
    created by ``ensure_schema`` serves approximate lookups run outside the
    engine.
    """

    name = "neo4j"

    def __init__(self, driver: AsyncDriver, database: str | None = None) -> None:
        self.driver = driver
        self.database = database

    @with_session()
    async def ensure_schema(self, session: AsyncSession, dimensions: int | None = None) -> None:
        for statement in SchemaQueries.constraints():
            await session.run(statement)
        if dimensions:
            await session.run(SchemaQueries.create_vector_index(dimensions))
        logger.info("Neo4j schema ensured", vector_dimensions=dimensions)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    @with_session()
    async def insert_memories(self, session: AsyncSession, memories: list[Memory]) -> None:
        rows = [to_properties(memory.model_dump()) for memory in memories]

        async def write(tx: AsyncManagedTransaction) -> int:
            result = await tx.run(MemoryQueries.insert_batch(), rows=rows)
            record = await result.single()
            return record["created"] if record else 0

        created = await session.execute_write(write)
        logger.debug("Inserted memory batch", created=created)

    @with_session()
    async def get_memory(self, session: AsyncSession, memory_id: str) -> Memory | None:
        result = await session.run(MemoryQueries.get_by_id(), id=memory_id)
        record = await result.single()
        return memory_from_record(from_properties(record["m"])) if record else None

    @with_session()
    async def query_similar(
        self,
        session: AsyncSession,
        vector: list[float],
        top_k: int,
        conversation_id: str | None,
        filters: SearchFilters,
    ) -> list[tuple[Memory, float]]:
        where, params = compile_search_filters(filters, conversation_id)
        query, _ = MemoryQueries.similarity_search(where)

        async def read(tx: AsyncManagedTransaction) -> list[tuple[Memory, float]]:
            result = await tx.run(
                query,
                embedding=vector,
                dimensions=len(vector),
                k=top_k,
                **params,
            )
            return [
                (memory_from_record(from_properties(record["m"])), float(record["distance"]))
                async for record in result
            ]

        return await session.execute_read(read)

    @with_session()
    async def update_memory(self, session: AsyncSession, memory_id: str, changes: dict[str, Any]) -> Memory | None:
        props = to_properties(changes)
        # Explicit None clears a property
        props.update({key: None for key, value in changes.items() if value is None})

        async def write(tx: AsyncManagedTransaction) -> dict[str, Any] | None:
            result = await tx.run(MemoryQueries.update_properties(), id=memory_id, props=props)
            record = await result.single()
            return record["m"] if record else None

        record = await session.execute_write(write)
        return memory_from_record(from_properties(record)) if record else None

    @with_session()
    async def increment_access(self, session: AsyncSession, memory_id: str, accessed_at: float) -> Memory | None:
        async def write(tx: AsyncManagedTransaction) -> dict[str, Any] | None:
            result = await tx.run(MemoryQueries.increment_access(), id=memory_id, accessed_at=accessed_at)
            record = await result.single()
            return record["m"] if record else None

        record = await session.execute_write(write)
        return memory_from_record(from_properties(record)) if record else None

    @with_session()
    async def delete_memories(self, session: AsyncSession, memory_ids: list[str]) -> int:
        async def write(tx: AsyncManagedTransaction) -> int:
            result = await tx.run(MemoryQueries.delete_by_ids(), ids=memory_ids)
            record = await result.single()
            return record["deleted"] if record else 0

        return await session.execute_write(write)

    @with_session()
    async def list_memories(
        self,
        session: AsyncSession,
        conversation_id: str | None = None,
        after_id: str | None = None,
        limit: int = 500,
    ) -> list[Memory]:
        result = await session.run(
            MemoryQueries.list_page(),
            conversation_id=conversation_id,
            after_id=after_id,
            limit=limit,
        )
        return [memory_from_record(from_properties(record["m"])) async for record in result]

    async def _single_value(self, session: AsyncSession, query: LiteralString, **params: Any) -> int:
        result = await session.run(query, **params)
        record = await result.single()
        return int(record["total"]) if record and record["total"] is not None else 0

    @with_session()
    async def count_memories(self, session: AsyncSession, conversation_id: str) -> int:
        return await self._single_value(session, MemoryQueries.count_for_conversation(), conversation_id=conversation_id)

    @with_session()
    async def count_chunks(self, session: AsyncSession, source_id: str, source_version: str) -> int:
        return await self._single_value(
            session,
            MemoryQueries.count_chunks(),
            source_id=source_id,
            source_version=source_version,
        )

    @with_session()
    async def supersede_chunks(self, session: AsyncSession, source_id: str, current_version: str, retain: bool) -> int:
        query = MemoryQueries.archive_superseded() if retain else MemoryQueries.delete_superseded()

        async def write(tx: AsyncManagedTransaction) -> int:
            result = await tx.run(query, source_id=source_id, current_version=current_version)
            record = await result.single()
            return record["total"] if record else 0

        return await session.execute_write(write)

    @with_session()
    async def save_source(self, session: AsyncSession, source: KnowledgeSource) -> None:
        await session.run(SourceQueries.upsert(), id=source.id, props=to_properties(source.model_dump()))

    @with_session()
    async def get_source(self, session: AsyncSession, source_id: str) -> KnowledgeSource | None:
        result = await session.run(SourceQueries.get_by_id(), id=source_id)
        record = await result.single()
        return KnowledgeSource.model_validate(from_properties(record["s"])) if record else None

    @with_session()
    async def find_source(self, session: AsyncSession, locator: str) -> KnowledgeSource | None:
        result = await session.run(SourceQueries.get_by_locator(), locator=locator)
        record = await result.single()
        return KnowledgeSource.model_validate(from_properties(record["s"])) if record else None

    @with_session()
    async def list_sources(self, session: AsyncSession, status: SourceStatus | None = None) -> list[KnowledgeSource]:
        result = await session.run(SourceQueries.list_all(), status=status.value if status else None)
        return [KnowledgeSource.model_validate(from_properties(record["s"])) async for record in result]

    @with_session()
    async def save_conversation(self, session: AsyncSession, conversation: Conversation) -> None:
        await session.run(
            ConversationQueries.upsert(),
            id=conversation.id,
            props=to_properties(conversation.model_dump()),
        )

    @with_session()
    async def get_conversation(self, session: AsyncSession, conversation_id: str) -> Conversation | None:
        result = await session.run(ConversationQueries.get_by_id(), id=conversation_id)
        record = await result.single()
        return Conversation.model_validate(from_properties(record["c"])) if record else None

    @with_session()
    async def list_conversations(self, session: AsyncSession) -> list[Conversation]:
        result = await session.run(ConversationQueries.list_all())
        return [Conversation.model_validate(from_properties(record["c"])) async for record in result]

    @with_session()
    async def increment_memory_count(self, session: AsyncSession, conversation_id: str, delta: int = 1) -> int | None:
        async def write(tx: AsyncManagedTransaction) -> int | None:
            result = await tx.run(ConversationQueries.increment_count(), id=conversation_id, delta=delta)
            record = await result.single()
            return int(record["total"]) if record else None

        return await session.execute_write(write)

    @with_session()
    async def set_memory_count(self, session: AsyncSession, conversation_id: str, count: int) -> None:
        await session.run(ConversationQueries.set_count(), id=conversation_id, count=count)

    async def health(self) -> dict[str, Any]:
        try:
            await self.driver.verify_connectivity()
        except Exception as e:
            logger.warning("Neo4j health check failed", error=str(e))
            return {"status": "unhealthy", "backend": self.name, "error": str(e)}
        return {"status": "healthy", "backend": self.name}

    async def close(self) -> None:
        await self.driver.close()
        logger.info("Neo4j driver closed")
