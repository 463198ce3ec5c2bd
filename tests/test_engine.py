import asyncio

import pytest

from semantic_memory.core.base import ErrorCode
from semantic_memory.core.errors import ConflictError, ServiceUnavailableError, ValidationError
from semantic_memory.core.events import EventKind
from semantic_memory.domain.models import ConversationState, IndexAction, SourceStatus, SourceType


async def test_store_and_search_round_trip(engine):
    await engine.create_conversation(conversation_id="c1")
    stored = await engine.store_memory("c1", "prefers concise answers", tags=["preference"])

    results = await engine.search_memories("c1", "preference", top_k=1)

    assert len(results) == 1
    assert results[0].id == stored.memory_id
    assert results[0].memory.content == "prefers concise answers"
    assert results[0].similarity > 0.5


async def test_storing_the_same_content_twice_keeps_one_record(engine, events):
    await engine.create_conversation(conversation_id="c1")

    first = await engine.store_memory("c1", "lives in reykjavik")
    second = await engine.store_memory("c1", "lives in reykjavik")

    assert first.created
    assert second.merged
    assert second.memory_id == first.memory_id
    conversation = await engine.get_conversation("c1")
    assert conversation.memory_count == 1
    assert conversation.state == ConversationState.ACTIVE
    assert len(events.of_kind(EventKind.MEMORY_STORED)) == 1
    assert len(events.of_kind(EventKind.DUPLICATE_SUPPRESSED)) == 1


async def test_archived_conversation_is_read_only_but_searchable(engine):
    await engine.create_conversation(conversation_id="c1")
    await engine.store_memory("c1", "prefers concise answers")
    await engine.archive_conversation("c1")

    with pytest.raises(ConflictError):
        await engine.store_memory("c1", "another fact")

    assert len(await engine.search_memories("c1", "concise answers")) == 1


async def test_unknown_conversation_is_rejected(engine):
    with pytest.raises(ValidationError) as exc_info:
        await engine.store_memory("missing", "some fact")
    assert exc_info.value.code == ErrorCode.NOT_FOUND

    with pytest.raises(ValidationError):
        await engine.search_memories("missing", "some fact")


@pytest.mark.parametrize(
    ("query", "top_k", "filters"),
    [
        ("", 5, None),
        ("   ", 5, None),
        ("fact", 0, None),
        ("fact", 5, {"created_after": "not a date"}),
        ("fact", 5, {"created_after": "2025-02-01T00:00:00Z", "created_before": "2025-01-01T00:00:00Z"}),
    ],
)
async def test_invalid_search_input(engine, query, top_k, filters):
    await engine.create_conversation(conversation_id="c1")
    with pytest.raises(ValidationError):
        await engine.search_memories("c1", query, top_k=top_k, filters=filters)


async def test_search_filters_and_weights_as_plain_dicts(engine):
    await engine.create_conversation(conversation_id="c1")
    tagged = await engine.store_memory("c1", "prefers tea over coffee", tags=["drinks"])
    await engine.store_memory("c1", "prefers concise answers")

    results = await engine.search_memories(
        "c1",
        "prefers",
        top_k=5,
        filters={"tags": ["drinks"]},
        ranking_weights={"similarity": 1, "recency": 0, "frequency": 0, "importance": 0},
    )

    assert [result.id for result in results] == [tagged.memory_id]
    assert results[0].score == pytest.approx(results[0].similarity)


async def test_search_across_all_conversations(engine):
    await engine.create_conversation(conversation_id="c1")
    await engine.create_conversation(conversation_id="c2")
    await engine.store_memory("c1", "prefers concise answers")
    await engine.store_memory("c2", "prefers detailed answers")

    results = await engine.search_memories(None, "answers", top_k=5)

    assert {result.memory.conversation_id for result in results} == {"c1", "c2"}


async def test_search_does_not_count_as_access(engine):
    await engine.create_conversation(conversation_id="c1")
    stored = await engine.store_memory("c1", "prefers concise answers")

    await engine.search_memories("c1", "concise")
    assert (await engine.get_memory(stored.memory_id)).access_count == 0

    accessed = await engine.record_access([stored.memory_id, "unknown"])
    assert [memory.access_count for memory in accessed] == [1]


async def test_update_memory_only_touches_mutable_fields(engine):
    await engine.create_conversation(conversation_id="c1")
    stored = await engine.store_memory("c1", "prefers concise answers")

    with pytest.raises(ValidationError):
        await engine.update_memory(stored.memory_id, {"content": "rewritten"})

    updated = await engine.update_memory(stored.memory_id, {"tags": ["style"], "metadata": {"important": True}})
    assert updated.tags == ["style"]
    assert updated.content == "prefers concise answers"
    assert await engine.update_memory("missing", {"tags": ["x"]}) is None


async def test_invalid_metadata_is_rejected(engine):
    await engine.create_conversation(conversation_id="c1")
    with pytest.raises(ValidationError):
        await engine.store_memory("c1", "fact", metadata={"nested": [1, 2]})


async def test_slow_operation_times_out(engine, provider):
    await engine.create_conversation(conversation_id="c1")

    async def hang(model, text):
        await asyncio.sleep(10)

    provider.generate = hang
    engine.operation_timeout = 0.05

    with pytest.raises(ServiceUnavailableError) as exc_info:
        await engine.store_memory("c1", "never stored")

    assert exc_info.value.code == ErrorCode.TIMEOUT
    assert "retry later" in exc_info.value.message
    assert (await engine.get_conversation("c1")).memory_count == 0


async def test_reconcile_conversation(engine):
    await engine.create_conversation(conversation_id="c1")
    await engine.store_memory("c1", "prefers concise answers")
    await engine.store.set_memory_count("c1", 42)

    reconciled = await engine.reconcile_conversation("c1")

    assert reconciled.memory_count == 1


async def test_index_and_search_knowledge(engine, tmp_path):
    path = tmp_path / "guide.md"
    path.write_text("Install the package with pip.\n\nConfigure the datastore before first use.")

    report = await engine.index_source(str(path))
    status = await engine.get_source_status(report.source.id)
    results = await engine.search_memories(None, "datastore configure", top_k=1)

    assert report.action == IndexAction.INDEXED
    assert status.status == SourceStatus.INDEXED
    assert results[0].memory.source_type == SourceType.KNOWLEDGE_BASE
    assert results[0].memory.source_id == report.source.id

    assert (await engine.refresh_source(report.source.id)).action == IndexAction.SKIPPED
    assert await engine.check_sources() == []


async def test_health(engine):
    health = await engine.health()

    assert health["status"] == "healthy"
    assert health["datastore"]["backend"] == "memory"
    assert health["embedding"]["circuit"]["state"] == "closed"
