"""Engine facade exposing the memory operations to a calling shell."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from semantic_memory.core.base import ErrorCode, ErrorLevel, ServiceErrorDetails, ValidationErrorDetails
from semantic_memory.core.decorators import with_error_handling
from semantic_memory.core.errors import ServiceUnavailableError, ValidationError
from semantic_memory.core.events import EventKind, EventRecorder
from semantic_memory.core.logging import get_logger, log_context
from semantic_memory.domain.models import (
    Conversation,
    IndexReport,
    KnowledgeSource,
    Memory,
    MemoryDraft,
    MemoryPatch,
    RankedMemory,
    RankingWeights,
    SearchFilters,
    SourceType,
    StoreResult,
    parse_model,
    validate_metadata,
)
from semantic_memory.infrastructure.embeddings import build_embedding_gateway
from semantic_memory.infrastructure.fetchers import SourceFetcher
from semantic_memory.infrastructure.neo4j import create_neo4j_driver
from semantic_memory.infrastructure.repositories.vector_store import VectorStore
from semantic_memory.infrastructure.vector import InMemoryVectorBackend, Neo4jVectorBackend

from .conversation_registry import ConversationRegistry
from .dedup import DeduplicationFilter
from .knowledge_indexer import KnowledgeIndexer
from .maintenance import MaintenanceJobs
from .ranking import RankingEngine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from semantic_memory.core.config import Settings
    from semantic_memory.infrastructure.embeddings import EmbeddingGateway, EmbeddingProvider
    from semantic_memory.infrastructure.vector import VectorBackend

logger = get_logger(__name__)


class MemoryEngine:
    """Conversation memory and knowledge indexing behind one interface.

    Ingestion runs registry -> dedup -> embedding gateway -> vector store;
    retrieval runs embedding gateway -> vector store -> ranking. Each
    public operation is bounded by ``operation_timeout``; on expiry its
    in-flight work is cancelled and ``ServiceUnavailableError`` is raised.

    When built with maintenance enabled, the background jobs run on the
    same event loop until ``close``.
    """

    def __init__(
        self,
        store: VectorStore,
        gateway: EmbeddingGateway,
        embedding_model: str,
        registry: ConversationRegistry | None = None,
        dedup: DeduplicationFilter | None = None,
        ranking: RankingEngine | None = None,
        indexer: KnowledgeIndexer | None = None,
        fetcher: SourceFetcher | None = None,
        candidate_multiplier: int = 4,
        operation_timeout: float = 120.0,
        maintenance: MaintenanceJobs | None = None,
        events: EventRecorder | None = None,
    ) -> None:
        self.events = events or EventRecorder()
        self.store = store
        self.gateway = gateway
        self.embedding_model = embedding_model
        self.registry = registry or ConversationRegistry(store, events=self.events)
        self.dedup = dedup or DeduplicationFilter(store, events=self.events)
        self.ranking = ranking or RankingEngine()
        self.fetcher = fetcher or SourceFetcher()
        self.indexer = indexer or KnowledgeIndexer(
            store=store,
            embedder=gateway,
            dedup=self.dedup,
            fetcher=self.fetcher,
            embedding_model=embedding_model,
            window_size=store.pool_size,
            events=self.events,
        )
        self.candidate_multiplier = max(1, candidate_multiplier)
        self.operation_timeout = operation_timeout
        self.maintenance = maintenance

    @classmethod
    async def from_settings(
        cls,
        settings: Settings,
        provider: EmbeddingProvider | None = None,
        backend: VectorBackend | None = None,
        events: EventRecorder | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> MemoryEngine:
        """Wire a complete engine from configuration.

        Example:
            ```python
            engine = await MemoryEngine.from_settings(Settings(datastore="memory"))
            conversation = await engine.create_conversation("support")
            await engine.store_memory(conversation.id, "prefers concise answers")
            ```
        """
        events = events or EventRecorder()
        gateway = build_embedding_gateway(settings, provider=provider, events=events, clock=clock, sleep=sleep)

        if backend is None:
            if settings.datastore == "memory":
                backend = InMemoryVectorBackend()
            else:
                driver = await create_neo4j_driver(
                    settings.neo4j_uri,
                    settings.neo4j_user,
                    settings.neo4j_password.get_secret_value(),
                    max_connection_pool_size=settings.pool_size,
                    connection_timeout=settings.timeouts.datastore_seconds,
                )
                backend = Neo4jVectorBackend(driver, database=settings.neo4j_database)

        store = VectorStore(
            backend,
            dimensions=gateway.dimensions,
            pool_size=settings.pool_size,
            query_timeout=settings.timeouts.datastore_seconds,
            events=events,
        )
        await store.ensure_schema(gateway.dimensions.dimension_for(settings.embedding_model))

        dedup = DeduplicationFilter(
            store,
            threshold=settings.dedup.threshold,
            strict_locking=settings.dedup.strict_locking,
            events=events,
        )
        ranking = RankingEngine(
            weights=RankingWeights(
                similarity=settings.ranking.similarity_weight,
                recency=settings.ranking.recency_weight,
                frequency=settings.ranking.frequency_weight,
                importance=settings.ranking.importance_weight,
            ),
            half_life_days=settings.ranking.half_life_days,
            frequency_saturation=settings.ranking.frequency_saturation,
        )
        fetcher = SourceFetcher(timeout=settings.timeouts.fetch_seconds)
        indexer = KnowledgeIndexer(
            store=store,
            embedder=gateway,
            dedup=dedup,
            fetcher=fetcher,
            embedding_model=settings.embedding_model,
            chunk_size_tokens=settings.chunking.chunk_size_tokens,
            overlap_tokens=settings.chunking.overlap_tokens,
            window_size=settings.pool_size,
            retain_superseded=settings.retain_superseded_chunks,
            events=events,
        )
        registry = ConversationRegistry(store, events=events)
        maintenance = None
        if settings.maintenance.enabled:
            maintenance = MaintenanceJobs(
                store,
                registry,
                indexer,
                ranking=ranking,
                config=settings.maintenance,
                events=events,
                cache=gateway.cache,
            )
            await maintenance.start()
        return cls(
            store=store,
            gateway=gateway,
            embedding_model=settings.embedding_model,
            registry=registry,
            dedup=dedup,
            ranking=ranking,
            indexer=indexer,
            fetcher=fetcher,
            candidate_multiplier=settings.ranking.candidate_multiplier,
            operation_timeout=settings.timeouts.operation_seconds,
            maintenance=maintenance,
            events=events,
        )

    @asynccontextmanager
    async def _bounded(self, operation: str, **context: Any) -> AsyncIterator[None]:
        with log_context(operation=operation, **context):
            try:
                async with asyncio.timeout(self.operation_timeout):
                    yield
            except TimeoutError as e:
                raise ServiceUnavailableError(
                    message=f"{operation} did not finish within {self.operation_timeout}s; retry later",
                    details=ServiceErrorDetails(
                        source="memory_engine",
                        operation=operation,
                        service_name="semantic_memory",
                    ),
                    code=ErrorCode.TIMEOUT,
                ) from e

    # Conversations

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def create_conversation(
        self,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        async with self._bounded("create_conversation", conversation_id=conversation_id):
            return await self.registry.create(name=name, metadata=metadata, conversation_id=conversation_id)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        async with self._bounded("get_conversation", conversation_id=conversation_id):
            return await self.registry.get(conversation_id)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def archive_conversation(self, conversation_id: str) -> Conversation:
        async with self._bounded("archive_conversation", conversation_id=conversation_id):
            return await self.registry.archive(conversation_id)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def reconcile_conversation(self, conversation_id: str) -> Conversation:
        async with self._bounded("reconcile_conversation", conversation_id=conversation_id):
            return await self.registry.reconcile(conversation_id)

    # Memories

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def store_memory(
        self,
        conversation_id: str,
        content: str,
        tags: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> StoreResult:
        """Store a memory in a conversation, or merge it into a near-duplicate.

        Raises:
            ValidationError: Unknown conversation, empty content or bad metadata
            ConflictError: The conversation is archived
            ServiceUnavailableError: The embedding service is unavailable
        """
        async with self._bounded("store_memory", conversation_id=conversation_id):
            conversation = await self.registry.require_writable(conversation_id)
            metadata = validate_metadata(metadata)
            embedding = await self.gateway.embed(self.embedding_model, content)
            draft = MemoryDraft(
                conversation_id=conversation_id,
                content=content,
                embedding=embedding,
                embedding_model=self.embedding_model,
                tags=tags or [],
                metadata=metadata,
                source_type=SourceType.CONVERSATION,
            )
            result = await self.dedup.insert(draft)
            if result.created:
                await self.registry.record_insert(conversation)
                self.events.emit(EventKind.MEMORY_STORED, memory_id=result.memory_id, conversation_id=conversation_id)
            else:
                await self.registry.record_merge(conversation)
            return result

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def search_memories(
        self,
        conversation_id: str | None,
        query: str,
        top_k: int = 5,
        filters: SearchFilters | dict[str, Any] | None = None,
        ranking_weights: RankingWeights | dict[str, float] | None = None,
    ) -> list[RankedMemory]:
        """Rank memories against a query.

        ``conversation_id=None`` searches every conversation and knowledge
        source. Results are not marked as accessed; call ``record_access``
        with the ids the caller actually used.
        """
        async with self._bounded("search_memories", conversation_id=conversation_id):
            if not query or not query.strip():
                raise ValidationError(
                    message="Search query must not be empty",
                    details=ValidationErrorDetails(source="memory_engine", operation="search_memories", field="query"),
                )
            if top_k < 1:
                raise ValidationError(
                    message="top_k must be at least 1",
                    details=ValidationErrorDetails(
                        source="memory_engine",
                        operation="search_memories",
                        field="top_k",
                        actual_value=top_k,
                    ),
                )
            if conversation_id is not None:
                await self.registry.require(conversation_id)
            parsed_filters = parse_model(SearchFilters, filters or {}, "search_memories")
            weights = parse_model(RankingWeights, ranking_weights, "search_memories") if ranking_weights else None

            vector = await self.gateway.embed(self.embedding_model, query)
            candidates = await self.store.query_similar(
                conversation_id,
                vector,
                top_k=top_k * self.candidate_multiplier,
                filters=parsed_filters,
                embedding_model=self.embedding_model,
            )
            ranked = self.ranking.rank(candidates, weights=weights)[:top_k]
            logger.debug("Search complete", candidates=len(candidates), returned=len(ranked))
            return ranked

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def record_access(self, memory_ids: list[str]) -> list[Memory]:
        """Mark consumed results as accessed. Unknown ids are skipped."""
        async with self._bounded("record_access"):
            accessed = []
            for memory_id in memory_ids:
                memory = await self.store.record_access(memory_id)
                if memory is not None:
                    accessed.append(memory)
            return accessed

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def get_memory(self, memory_id: str) -> Memory | None:
        async with self._bounded("get_memory", memory_id=memory_id):
            return await self.store.get(memory_id)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def update_memory(self, memory_id: str, patch: dict[str, Any] | MemoryPatch) -> Memory | None:
        """Patch the mutable fields of a memory.

        Returns:
            The updated memory, or None when it does not exist

        Raises:
            ValidationError: If the patch touches an immutable field
        """
        async with self._bounded("update_memory", memory_id=memory_id):
            return await self.store.update_metadata(memory_id, patch)

    # Knowledge sources

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def index_source(
        self,
        locator: str,
        chunk_size_tokens: int | None = None,
        overlap_tokens: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IndexReport:
        async with self._bounded("index_source", locator=locator):
            return await self.indexer.index_source(locator, chunk_size_tokens, overlap_tokens, metadata)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def refresh_source(self, source_id: str, force: bool = False) -> IndexReport:
        async with self._bounded("refresh_source", source_id=source_id):
            return await self.indexer.refresh_source(source_id, force=force)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def get_source_status(self, source_id: str) -> KnowledgeSource | None:
        async with self._bounded("get_source_status", source_id=source_id):
            return await self.indexer.get_source(source_id)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def check_sources(self) -> list[KnowledgeSource]:
        async with self._bounded("check_sources"):
            return await self.indexer.check_sources()

    # Lifecycle

    async def health(self) -> dict[str, Any]:
        embedding = await self.gateway.health()
        datastore = await self.store.health()
        healthy = embedding.get("status") in ("healthy", "configured") and datastore.get("status") == "healthy"
        return {
            "status": "healthy" if healthy else "degraded",
            "embedding": embedding,
            "datastore": datastore,
        }

    async def close(self) -> None:
        if self.maintenance is not None:
            await self.maintenance.shutdown()
        await self.gateway.close()
        await self.fetcher.close()
        await self.store.close()
        logger.info("Memory engine closed")
