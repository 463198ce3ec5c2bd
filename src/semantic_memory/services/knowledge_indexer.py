"""Knowledge source indexing, change detection and resumable re-indexing."""

import asyncio
import hashlib
from typing import Any

from semantic_memory.core.base import ErrorCode, PartialFailureDetails, ResourceErrorDetails, ValidationErrorDetails
from semantic_memory.core.errors import ApplicationError, ConflictError, PartialFailureError, ValidationError
from semantic_memory.core.events import EventKind, EventRecorder
from semantic_memory.core.logging import get_logger, log_context
from semantic_memory.domain.models import (
    IndexAction,
    IndexReport,
    KnowledgeSource,
    MemoryDraft,
    SourceStatus,
    SourceType,
    can_transition,
    utc_now,
    validate_metadata,
)
from semantic_memory.infrastructure.fetchers import FetchedContent, SourceFetcher
from semantic_memory.infrastructure.repositories.vector_store import VectorStore
from semantic_memory.services import EmbeddingService

from .chunking import TextChunk, TextChunker, Tokenizer
from .dedup import DeduplicationFilter

logger = get_logger(__name__)


def index_version(content_hash: str, chunk_size_tokens: int, overlap_tokens: int, model: str) -> str:
    """Key of one indexing of one content version.

    Chunks are tagged with it, so changing either the content or how it is
    chunked and embedded yields a fresh set of chunks.
    """
    key = f"{content_hash}:{chunk_size_tokens}:{overlap_tokens}:{model}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class KnowledgeIndexer:
    """Chunks external documents and feeds them through the memory pipeline.

    Per source: ``pending -> indexing -> indexed | failed``; ``indexed ->
    stale`` once change detection sees a new content hash; ``stale`` and
    ``failed`` sources go back to ``indexing`` on refresh.

    Chunks are embedded and written a window at a time, and
    ``chunk_count`` is persisted after each window. A failure leaves the
    source ``failed`` with the committed count, and the next refresh of the
    same content resumes from there.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingService,
        dedup: DeduplicationFilter,
        fetcher: SourceFetcher,
        embedding_model: str,
        chunk_size_tokens: int = 500,
        overlap_tokens: int = 50,
        window_size: int = 16,
        retain_superseded: bool = True,
        tokenizer: Tokenizer | None = None,
        events: EventRecorder | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.dedup = dedup
        self.fetcher = fetcher
        self.embedding_model = embedding_model
        self.chunk_size_tokens = chunk_size_tokens
        self.overlap_tokens = overlap_tokens
        self.window_size = max(1, window_size)
        self.retain_superseded = retain_superseded
        self.tokenizer = tokenizer
        self.events = events or EventRecorder()
        self._running: set[str] = set()

    # Source bookkeeping

    async def get_source(self, source_id: str) -> KnowledgeSource | None:
        return await self.store.get_source(source_id)

    async def require_source(self, source_id: str) -> KnowledgeSource:
        source = await self.store.get_source(source_id)
        if source is None:
            raise ValidationError(
                message=f"Unknown knowledge source: {source_id}",
                details=ValidationErrorDetails(
                    source="knowledge_indexer",
                    operation="require_source",
                    field="source_id",
                    actual_value=source_id,
                ),
                code=ErrorCode.NOT_FOUND,
            )
        return source

    async def _transition(self, source: KnowledgeSource, target: SourceStatus) -> None:
        if not can_transition(source.status, target):
            raise ConflictError(
                message=f"Source {source.id} cannot go from {source.status.value} to {target.value}",
                details=self._resource_details(source.id, "transition"),
            )
        previous = source.status
        source.status = target
        await self.store.save_source(source)
        self.events.emit(
            EventKind.SOURCE_STATUS_CHANGED,
            source_id=source.id,
            from_status=previous.value,
            to_status=target.value,
        )

    async def _mark_failed(self, source: KnowledgeSource, error: str) -> None:
        source.last_error = error
        if source.status == SourceStatus.INDEXING:
            await self._transition(source, SourceStatus.FAILED)
        else:
            await self.store.save_source(source)

    def _claim(self, source_id: str) -> None:
        if source_id in self._running:
            raise ConflictError(
                message=f"Source {source_id} is already being indexed",
                details=self._resource_details(source_id, "index"),
            )
        self._running.add(source_id)

    @staticmethod
    def _resource_details(source_id: str, action: str) -> ResourceErrorDetails:
        return ResourceErrorDetails(
            source="knowledge_indexer",
            operation=action,
            resource_id=source_id,
            resource_type="knowledge_source",
            action=action,
        )

    def _chunker(self, source: KnowledgeSource) -> TextChunker:
        return TextChunker(source.chunk_size_tokens, source.overlap_tokens, self.tokenizer)

    def _version_of(self, source: KnowledgeSource, fetched: FetchedContent) -> str:
        return index_version(
            fetched.content_hash,
            source.chunk_size_tokens,
            source.overlap_tokens,
            self.embedding_model,
        )

    # Operations

    async def index_source(
        self,
        locator: str,
        chunk_size_tokens: int | None = None,
        overlap_tokens: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IndexReport:
        """Register and index a source.

        A locator that is already registered is refreshed instead; new
        chunking parameters force a re-index.

        Raises:
            ValidationError: Bad locator, parameters or content
            ServiceUnavailableError: The source could not be fetched
            PartialFailureError: Indexing stopped partway; refresh to resume
        """
        size = chunk_size_tokens if chunk_size_tokens is not None else self.chunk_size_tokens
        overlap = overlap_tokens if overlap_tokens is not None else self.overlap_tokens
        # Fails fast on invalid budgets
        TextChunker(size, overlap, self.tokenizer)
        metadata = validate_metadata(metadata)

        existing = await self.store.find_source(locator)
        if existing is not None:
            changed = (existing.chunk_size_tokens, existing.overlap_tokens) != (size, overlap)
            existing.chunk_size_tokens = size
            existing.overlap_tokens = overlap
            existing.metadata = {**existing.metadata, **metadata}
            await self.store.save_source(existing)
            return await self.refresh_source(existing.id, force=changed)

        source = KnowledgeSource(
            locator=locator,
            chunk_size_tokens=size,
            overlap_tokens=overlap,
            metadata=metadata,
        )
        await self.store.save_source(source)
        self._claim(source.id)
        try:
            with log_context(source_id=source.id):
                await self._transition(source, SourceStatus.INDEXING)
                try:
                    fetched = await self.fetcher.fetch(locator)
                except Exception as e:
                    await self._mark_failed(source, str(e))
                    raise
                source.content_hash = fetched.content_hash
                source.index_version = self._version_of(source, fetched)
                source.last_checked_at = utc_now()
                return await self._index(source, fetched, start=0, action=IndexAction.INDEXED)
        finally:
            self._running.discard(source.id)

    async def refresh_source(self, source_id: str, force: bool = False) -> IndexReport:
        """Re-fetch a source and bring its chunks up to date.

        Unchanged content of an indexed source is a no-op unless ``force``.
        Unchanged content of a failed source resumes from the committed
        chunk count. Changed content is re-chunked and re-embedded in full;
        the previous version's chunks are superseded once the new version
        is complete.
        """
        source = await self.require_source(source_id)
        self._claim(source.id)
        try:
            with log_context(source_id=source.id):
                return await self._refresh(source, force)
        finally:
            self._running.discard(source.id)

    async def _refresh(self, source: KnowledgeSource, force: bool) -> IndexReport:
        fetched = await self.fetcher.fetch(source.locator)
        source.last_checked_at = utc_now()
        version = self._version_of(source, fetched)
        unchanged = fetched.content_hash == source.content_hash and version == source.index_version

        if unchanged and source.status == SourceStatus.INDEXED and not force:
            await self.store.save_source(source)
            self.events.emit(
                EventKind.REINDEX_SKIPPED,
                source_id=source.id,
                content_hash=source.content_hash,
                reason="content unchanged",
            )
            return IndexReport(source=source, action=IndexAction.SKIPPED, chunks_total=source.chunk_count)

        if unchanged and source.is_resumable and not force:
            start, action = source.chunk_count, IndexAction.RESUMED
            self.events.emit(EventKind.REINDEX_RESUMED, source_id=source.id, from_chunk=start)
        elif unchanged:
            start, action = 0, IndexAction.REINDEXED
            self.events.emit(
                EventKind.REINDEX_STARTED,
                source_id=source.id,
                reason="forced" if force else source.status.value,
            )
        else:
            if source.status == SourceStatus.INDEXED:
                await self._transition(source, SourceStatus.STALE)
            reason = "content changed" if fetched.content_hash != source.content_hash else "parameters changed"
            if fetched.content_hash != source.content_hash:
                source.previous_hash = source.content_hash
                source.content_hash = fetched.content_hash
            source.index_version = version
            source.chunk_count = 0
            source.expected_chunks = None
            start, action = 0, IndexAction.REINDEXED
            self.events.emit(
                EventKind.REINDEX_STARTED,
                source_id=source.id,
                reason=reason,
                content_hash=source.content_hash,
                previous_hash=source.previous_hash,
            )

        if source.status == SourceStatus.INDEXING:
            # Left behind by a job that is no longer running
            await self._transition(source, SourceStatus.FAILED)
        await self._transition(source, SourceStatus.INDEXING)
        return await self._index(source, fetched, start=start, action=action)

    async def _index(
        self,
        source: KnowledgeSource,
        fetched: FetchedContent,
        start: int,
        action: IndexAction,
    ) -> IndexReport:
        chunks = self._chunker(source).chunk(fetched.text)
        source.expected_chunks = len(chunks)
        start = min(start, len(chunks))
        source.chunk_count = start
        await self.store.save_source(source)

        committed = start
        created = 0
        suppressed = 0
        chunk_ids: dict[int, str] = {}
        try:
            for offset in range(start, len(chunks), self.window_size):
                window = chunks[offset : offset + self.window_size]
                vectors = await self.embedder.embed_batch(self.embedding_model, [chunk.text for chunk in window])
                kept, merged = await self._write_window(source, window, vectors, chunk_ids)
                committed += len(window)
                created += kept
                suppressed += merged
                source.chunk_count = committed
                await self.store.save_source(source)
        except asyncio.CancelledError:
            await asyncio.shield(self._mark_failed(source, "indexing cancelled"))
            raise
        except Exception as e:
            await self._mark_failed(source, str(e))
            raise PartialFailureError(
                message=(
                    f"Indexing {source.locator} stopped after {committed} of {len(chunks)} chunks; "
                    f"refresh source {source.id} to resume"
                ),
                details=PartialFailureDetails(
                    source="knowledge_indexer",
                    operation="index",
                    job_id=source.id,
                    succeeded=committed,
                    failed=len(chunks) - committed,
                    cause=str(e),
                ),
            ) from e

        superseded = await self.store.supersede_chunks(source.id, source.index_version, retain=self.retain_superseded)
        source.indexed_at = utc_now()
        source.last_error = None
        source.chunk_count = len(chunks)
        await self._transition(source, SourceStatus.INDEXED)

        logger.info(
            "Source indexed",
            locator=source.locator,
            action=action.value,
            chunks=len(chunks),
            created=created,
            suppressed=suppressed,
            superseded=superseded,
        )
        return IndexReport(
            source=source,
            action=action,
            chunks_created=created,
            chunks_total=len(chunks),
            chunks_superseded=superseded,
            duplicates_suppressed=suppressed,
        )

    async def _write_window(
        self,
        source: KnowledgeSource,
        window: list[TextChunk],
        vectors: list[list[float]],
        chunk_ids: dict[int, str],
    ) -> tuple[int, int]:
        """Write one window of chunks in a single batch.

        Returns:
            Number of chunks written and number merged into duplicates
        """
        records = []
        for chunk, vector in zip(window, vectors, strict=True):
            parent_id = chunk_ids.get(chunk.parent_sequence) if chunk.parent_sequence is not None else None
            record = self.store.prepare(
                MemoryDraft(
                    content=chunk.text,
                    embedding=vector,
                    embedding_model=self.embedding_model,
                    metadata={"locator": source.locator},
                    source_type=SourceType.KNOWLEDGE_BASE,
                    source_id=source.id,
                    sequence=chunk.sequence,
                    token_count=chunk.token_count,
                    parent_chunk_id=parent_id,
                    source_version=source.index_version,
                )
            )
            chunk_ids[chunk.sequence] = record.id
            records.append(record)

        keep, merged = await self.dedup.partition(records)

        # Point references at the surviving record of a merged chunk
        survivors = {records[index].id: result.memory_id for index, result in merged.items()}
        for index, result in merged.items():
            chunk_ids[window[index].sequence] = result.memory_id
        kept = [records[index] for index in keep]
        for record in kept:
            if record.parent_chunk_id in survivors:
                record.parent_chunk_id = survivors[record.parent_chunk_id]

        await self.store.insert_batch(kept)
        return len(kept), len(merged)

    # Change detection

    async def detect_change(self, source_id: str) -> bool:
        """Re-fetch a source and compare hashes; an indexed source that changed goes stale."""
        source = await self.require_source(source_id)
        fetched = await self.fetcher.fetch(source.locator)
        changed = fetched.content_hash != source.content_hash
        source.last_checked_at = utc_now()
        if changed and source.status == SourceStatus.INDEXED and source.id not in self._running:
            await self._transition(source, SourceStatus.STALE)
        else:
            await self.store.save_source(source)
        return changed

    async def check_sources(self) -> list[KnowledgeSource]:
        """Run change detection over every indexed source.

        A source that cannot be fetched is logged and left as it is.

        Returns:
            Sources that were marked stale
        """
        stale = []
        for source in await self.store.list_sources(SourceStatus.INDEXED):
            try:
                if await self.detect_change(source.id):
                    stale.append(source.id)
            except ApplicationError as e:
                logger.warning("Change detection failed", source_id=source.id, locator=source.locator, error=e.message)
        return [s for s in [await self.store.get_source(source_id) for source_id in stale] if s is not None]
