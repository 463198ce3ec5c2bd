"""Shared fixtures for the engine tests."""

import pytest

from fakes import DIM, MODEL, FakeEmbeddingProvider, ManualClock, RecordingSleep
from semantic_memory.core.config import Settings
from semantic_memory.core.events import EventRecorder
from semantic_memory.infrastructure.embeddings import build_embedding_gateway
from semantic_memory.infrastructure.repositories.vector_store import VectorStore
from semantic_memory.infrastructure.vector import InMemoryVectorBackend
from semantic_memory.services.engine import MemoryEngine


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        datastore="memory",
        embedding_model=MODEL,
        embedding_dimensions={MODEL: DIM},
        pool_size=4,
    )


@pytest.fixture
def gateway(settings, provider, events, clock, sleep):
    return build_embedding_gateway(settings, provider=provider, events=events, clock=clock, sleep=sleep)


@pytest.fixture
def backend():
    return InMemoryVectorBackend()


@pytest.fixture
def store(backend, gateway, events):
    return VectorStore(backend, dimensions=gateway.dimensions, pool_size=4, events=events)


@pytest.fixture
async def engine(settings, provider, backend, events, clock, sleep):
    engine = await MemoryEngine.from_settings(
        settings,
        provider=provider,
        backend=backend,
        events=events,
        clock=clock,
        sleep=sleep,
    )
    yield engine
    await engine.close()
