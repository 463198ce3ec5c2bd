from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from semantic_memory.core.base import ErrorLevel
from semantic_memory.core.config import MaintenanceConfig
from semantic_memory.core.decorators import with_error_handling
from semantic_memory.core.events import EventKind, EventRecorder
from semantic_memory.core.logging import get_logger
from semantic_memory.domain.models import utc_now
from semantic_memory.infrastructure.embeddings import EmbeddingCache
from semantic_memory.infrastructure.repositories.vector_store import VectorStore

from .conversation_registry import ConversationRegistry
from .knowledge_indexer import KnowledgeIndexer
from .ranking import RankingEngine

logger = get_logger(__name__)

# Scores closer than this are not rewritten
RELEVANCE_EPSILON = 1e-4


class MaintenanceJobs:
    """Background jobs for relevance decay, count reconciliation, change detection and cache expiry."""

    def __init__(
        self,
        store: VectorStore,
        registry: ConversationRegistry,
        indexer: KnowledgeIndexer,
        ranking: RankingEngine | None = None,
        config: MaintenanceConfig | None = None,
        events: EventRecorder | None = None,
        cache: EmbeddingCache | None = None,
    ):
        self.store = store
        self.registry = registry
        self.indexer = indexer
        self.ranking = ranking or RankingEngine()
        self.config = config or MaintenanceConfig()
        self.events = events or EventRecorder()
        self.cache = cache
        self.scheduler = AsyncIOScheduler()
        self._setup_jobs()

    def _setup_jobs(self):
        """Register the jobs with the scheduler."""
        self.scheduler.add_job(
            self.refresh_relevance,
            "interval",
            minutes=self.config.relevance_refresh_minutes,
            id="relevance_refresh",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.reconcile_counts,
            "interval",
            hours=self.config.reconcile_hours,
            id="reconcile_counts",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.detect_changes,
            "interval",
            hours=self.config.change_detection_hours,
            id="detect_changes",
            max_instances=1,
            coalesce=True,
        )
        if self.cache is not None:
            self.scheduler.add_job(
                self.purge_cache,
                "interval",
                minutes=self.config.cache_purge_minutes,
                id="purge_cache",
                max_instances=1,
                coalesce=True,
            )

    async def start(self):
        self.scheduler.start()
        logger.info("MaintenanceJobs started - background memory maintenance active")

    async def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        logger.info("MaintenanceJobs shutdown complete")

    @with_error_handling(error_level=ErrorLevel.WARNING, reraise=False)
    async def refresh_relevance(self) -> int:
        """Recompute every memory's decayed relevance score."""
        now = utc_now()
        updated = 0
        async for memory in self.store.iter_memories():
            score = round(self.ranking.relevance(memory, now), 6)
            if abs(score - memory.relevance_score) < RELEVANCE_EPSILON:
                continue
            await self.store.update_metadata(memory.id, {"relevance_score": score})
            updated += 1
        self.events.emit(EventKind.RELEVANCE_REFRESHED, updated=updated)
        logger.info(f"Applied relevance decay to {updated} memories")
        return updated

    @with_error_handling(error_level=ErrorLevel.WARNING, reraise=False)
    async def reconcile_counts(self) -> int:
        """Recount memories of every conversation, repairing drifted counts."""
        repaired = 0
        for conversation in await self.registry.list():
            recorded = conversation.memory_count
            reconciled = await self.registry.reconcile(conversation.id)
            if reconciled.memory_count != recorded:
                repaired += 1
        logger.info(f"Reconciled memory counts, {repaired} repaired")
        return repaired

    @with_error_handling(error_level=ErrorLevel.WARNING, reraise=False)
    async def detect_changes(self) -> int:
        """Mark indexed sources whose content changed as stale."""
        stale = await self.indexer.check_sources()
        if stale:
            logger.info(f"Change detection marked {len(stale)} sources stale")
        return len(stale)

    @with_error_handling(error_level=ErrorLevel.WARNING, reraise=False)
    async def purge_cache(self) -> int:
        """Drop expired embedding cache entries so idle keys do not linger until evicted."""
        if self.cache is None:
            return 0
        purged = self.cache.purge_expired()
        if purged:
            logger.info(f"Purged {purged} expired embedding cache entries")
        return purged

    def get_job_status(self) -> dict[str, Any]:
        """Get status of all scheduled jobs."""
        jobs = self.scheduler.get_jobs()
        return {
            "scheduler_running": self.scheduler.running,
            "jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
                    "func": job.func.__name__,
                }
                for job in jobs
            ],
        }
