import asyncio
from datetime import timedelta

import pytest

from fakes import DIM, MODEL, fake_vector
from semantic_memory.core.base import ErrorCode
from semantic_memory.core.errors import DatastoreError, ValidationError
from semantic_memory.core.events import EventKind
from semantic_memory.domain.models import MemoryDraft, SearchFilters, SourceType, utc_now
from semantic_memory.infrastructure.embeddings import ModelDimensionRegistry
from semantic_memory.infrastructure.repositories.vector_store import VectorStore, similarity_from_distance
from semantic_memory.infrastructure.vector import InMemoryVectorBackend


def draft(text: str, conversation_id: str = "c1", **fields) -> MemoryDraft:
    return MemoryDraft(
        conversation_id=conversation_id,
        content=text,
        embedding=fields.pop("embedding", None) or fake_vector(text),
        embedding_model=MODEL,
        **fields,
    )


TEXTS = [
    "the cat sat on the mat",
    "dogs chase cats in the park",
    "quarterly revenue grew strongly",
    "cats sleep most of the day",
    "the stock market fell sharply",
]


async def test_insert_assigns_id_and_round_trips(store):
    memory_id = await store.insert(draft("remember the milk", tags=["todo", "todo", " shopping "]))

    stored = await store.get(memory_id)

    assert stored.id == memory_id
    assert stored.content == "remember the milk"
    assert stored.tags == ["shopping", "todo"]
    assert stored.access_count == 0
    assert stored.created_at.tzinfo is not None


async def test_missing_memory_is_none_not_error(store):
    assert await store.get("does-not-exist") is None


async def test_query_orders_by_similarity(store):
    for text in TEXTS:
        await store.insert(draft(text))

    results = await store.query_similar("c1", fake_vector("cats"), top_k=5)

    similarities = [candidate.similarity for candidate in results]
    assert similarities == sorted(similarities, reverse=True)
    assert results[0].memory.content in {"dogs chase cats in the park", "cats sleep most of the day"}


async def test_order_does_not_depend_on_insertion_order(gateway, events):
    forward = VectorStore(InMemoryVectorBackend(), dimensions=gateway.dimensions, events=events)
    backward = VectorStore(InMemoryVectorBackend(), dimensions=gateway.dimensions, events=events)
    vector = fake_vector("the cats")

    for text in TEXTS:
        await forward.insert(draft(text))
    for text in reversed(TEXTS):
        await backward.insert(draft(text))

    forward_order = [c.memory.content for c in await forward.query_similar("c1", vector, top_k=5)]
    backward_order = [c.memory.content for c in await backward.query_similar("c1", vector, top_k=5)]
    assert forward_order == backward_order


async def test_ties_break_on_id(store):
    same = fake_vector("identical text")
    ids = [await store.insert(draft(f"copy {i}", embedding=same)) for i in range(4)]

    results = await store.query_similar("c1", same, top_k=4)

    assert [candidate.memory.id for candidate in results] == sorted(ids)


async def test_filters_apply_before_top_k(store):
    for i in range(10):
        await store.insert(draft(f"cats and more cats {i}"))
    tagged = await store.insert(draft("quarterly revenue grew", tags=["finance"]))

    results = await store.query_similar("c1", fake_vector("cats"), top_k=1, filters=SearchFilters(tags=["finance"]))

    assert [candidate.memory.id for candidate in results] == [tagged]


async def test_query_is_scoped_to_conversation(store):
    await store.insert(draft("cats everywhere", conversation_id="c1"))
    other = await store.insert(draft("cats everywhere too", conversation_id="c2"))

    scoped = await store.query_similar("c2", fake_vector("cats"), top_k=5)
    everywhere = await store.query_similar(None, fake_vector("cats"), top_k=5)

    assert [candidate.memory.id for candidate in scoped] == [other]
    assert len(everywhere) == 2


async def test_date_and_source_type_filters(store):
    await store.insert(draft("web page about cats", source_type=SourceType.WEB))
    conversation = await store.insert(draft("chat about cats"))

    results = await store.query_similar(
        "c1",
        fake_vector("cats"),
        top_k=5,
        filters=SearchFilters(
            source_types=[SourceType.CONVERSATION],
            created_after=utc_now() - timedelta(minutes=1),
        ),
    )
    future = await store.query_similar(
        "c1",
        fake_vector("cats"),
        top_k=5,
        filters=SearchFilters(created_after=utc_now() + timedelta(days=1)),
    )

    assert [candidate.memory.id for candidate in results] == [conversation]
    assert future == []


async def test_archived_memories_are_hidden_unless_requested(store):
    memory_id = await store.insert(draft("old news"))
    await store.update_metadata(memory_id, {"archived": True})

    assert await store.query_similar("c1", fake_vector("old news"), top_k=5) == []
    hidden = await store.query_similar(
        "c1", fake_vector("old news"), top_k=5, filters=SearchFilters(include_archived=True)
    )
    assert [candidate.memory.id for candidate in hidden] == [memory_id]


async def test_invalid_top_k_and_dimension(store):
    with pytest.raises(ValidationError):
        await store.query_similar("c1", fake_vector("x"), top_k=0)
    with pytest.raises(ValidationError) as exc_info:
        await store.insert(draft("short vector", embedding=[1.0, 0.0]))
    assert exc_info.value.code == ErrorCode.DIMENSION_MISMATCH
    with pytest.raises(ValidationError):
        await store.query_similar("c1", [1.0, 0.0], top_k=1, embedding_model=MODEL)


async def test_insert_batch_is_all_or_nothing(store, backend):
    good = draft("good one")
    bad = draft("bad one", embedding=[1.0] * (DIM - 1))

    with pytest.raises(ValidationError):
        await store.insert_batch([good, bad])

    assert await backend.count_memories("c1") == 0
    ids = await store.insert_batch([good, draft("another good one")])
    assert len(ids) == 2
    assert await store.count_memories("c1") == 2


async def test_concurrent_inserts_of_distinct_memories(store):
    ids = await asyncio.gather(*(store.insert(draft(f"memory {i}")) for i in range(20)))
    assert len(set(ids)) == 20
    assert await store.count_memories("c1") == 20


async def test_patch_rejects_immutable_fields(store):
    memory_id = await store.insert(draft("write once"))

    for field, value in [("content", "changed"), ("embedding", [0.0] * DIM), ("conversation_id", "c9")]:
        with pytest.raises(ValidationError):
            await store.update_metadata(memory_id, {field: value})

    updated = await store.update_metadata(memory_id, {"tags": ["kept"], "metadata": {"source": "chat", "n": 2}})
    assert updated.tags == ["kept"]
    assert updated.metadata == {"source": "chat", "n": 2}
    assert updated.content == "write once"


async def test_patch_rejects_invalid_metadata(store):
    memory_id = await store.insert(draft("write once"))
    with pytest.raises(ValidationError):
        await store.update_metadata(memory_id, {"metadata": {"bad": [1, 2, 3]}})


async def test_update_of_missing_memory_returns_none(store):
    assert await store.update_metadata("missing", {"tags": ["x"]}) is None


async def test_record_access_increments_and_emits(store, events):
    memory_id = await store.insert(draft("used often"))

    await store.record_access(memory_id)
    memory = await store.record_access(memory_id)

    assert memory.access_count == 2
    assert memory.last_accessed_at is not None
    assert len(events.of_kind(EventKind.MEMORY_ACCESSED)) == 2


async def test_iter_memories_pages_through_everything(store):
    for i in range(7):
        await store.insert(draft(f"memory {i}"))

    seen = [memory.id async for memory in store.iter_memories("c1", page_size=3)]

    assert len(seen) == 7
    assert seen == sorted(seen)


async def test_query_timeout_becomes_datastore_error(gateway):
    class SlowBackend(InMemoryVectorBackend):
        async def get_memory(self, memory_id):
            await asyncio.sleep(1)

    store = VectorStore(SlowBackend(), dimensions=ModelDimensionRegistry(), query_timeout=0.01)
    with pytest.raises(DatastoreError) as exc_info:
        await store.get("any")
    assert exc_info.value.code == ErrorCode.DB_TIMEOUT


async def test_backend_connection_failure_becomes_datastore_error():
    class BrokenBackend(InMemoryVectorBackend):
        async def count_memories(self, conversation_id):
            raise ConnectionError("connection reset")

    store = VectorStore(BrokenBackend())
    with pytest.raises(DatastoreError) as exc_info:
        await store.count_memories("c1")
    assert exc_info.value.code == ErrorCode.DB_CONNECTION


def test_similarity_from_distance_is_clamped():
    assert similarity_from_distance(0.0) == 1.0
    assert similarity_from_distance(1.5) == 0.0
    assert similarity_from_distance(-1e-12) == 1.0
