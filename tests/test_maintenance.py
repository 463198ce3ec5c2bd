from datetime import timedelta

import pytest

from fakes import MODEL, fake_vector
from semantic_memory.core.config import MaintenanceConfig
from semantic_memory.core.events import EventKind
from semantic_memory.domain.models import MemoryDraft, SourceStatus, utc_now
from semantic_memory.services.engine import MemoryEngine
from semantic_memory.services.maintenance import MaintenanceJobs


@pytest.fixture
async def jobs(engine, events):
    return MaintenanceJobs(
        engine.store,
        engine.registry,
        engine.indexer,
        ranking=engine.ranking,
        events=events,
        cache=engine.gateway.cache,
    )


async def test_refresh_relevance_decays_unused_memories(jobs, engine, events):
    await engine.create_conversation(conversation_id="c1")
    old_id = await engine.store.insert(
        MemoryDraft(
            conversation_id="c1",
            content="an old fact",
            embedding=fake_vector("an old fact"),
            embedding_model=MODEL,
        )
    )
    await engine.store.update_metadata(old_id, {"last_accessed_at": utc_now() - timedelta(days=60)})

    updated = await jobs.refresh_relevance()

    memory = await engine.store.get(old_id)
    assert updated == 1
    assert memory.relevance_score < 0.5
    assert events.of_kind(EventKind.RELEVANCE_REFRESHED)[-1].attributes == {"updated": 1}

    # Scores that have not moved are not rewritten
    assert await jobs.refresh_relevance() == 0


async def test_reconcile_counts_repairs_only_drifted(jobs, engine):
    await engine.create_conversation(conversation_id="c1")
    await engine.create_conversation(conversation_id="c2")
    await engine.store_memory("c1", "prefers concise answers")
    await engine.store_memory("c2", "prefers detailed answers")
    await engine.store.set_memory_count("c2", 9)

    assert await jobs.reconcile_counts() == 1
    assert (await engine.get_conversation("c2")).memory_count == 1


async def test_detect_changes_marks_stale(jobs, engine, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("first version")
    source = (await engine.index_source(str(path))).source

    assert await jobs.detect_changes() == 0
    path.write_text("second version")
    assert await jobs.detect_changes() == 1
    assert (await engine.get_source_status(source.id)).status == SourceStatus.STALE


async def test_purge_cache_drops_only_expired_entries(jobs, engine, events, clock):
    cache = engine.gateway.cache
    cache.put(MODEL, "old text", fake_vector("old text"))
    clock.advance(cache.ttl_seconds)
    cache.put(MODEL, "fresh text", fake_vector("fresh text"))

    assert await jobs.purge_cache() == 1
    assert cache.get(MODEL, "fresh text") == fake_vector("fresh text")
    assert len(events.of_kind(EventKind.CACHE_EXPIRED)) == 1


async def test_job_failures_are_logged_not_raised(jobs, engine):
    async def broken():
        raise ConnectionError("datastore gone")

    engine.indexer.check_sources = broken

    assert await jobs.detect_changes() is None


async def test_jobs_are_registered(jobs):
    status = jobs.get_job_status()

    assert not status["scheduler_running"]
    assert {job["id"] for job in status["jobs"]} == {
        "relevance_refresh",
        "reconcile_counts",
        "detect_changes",
        "purge_cache",
    }


async def test_engine_runs_jobs_when_enabled(settings, provider, events, clock, sleep):
    settings = settings.model_copy(update={"maintenance": MaintenanceConfig(enabled=True)})
    engine = await MemoryEngine.from_settings(settings, provider=provider, events=events, clock=clock, sleep=sleep)

    assert engine.maintenance.get_job_status()["scheduler_running"]

    await engine.close()
    assert not engine.maintenance.scheduler.running
