"""Datastore backend interface driven by the vector store."""

from typing import Any, Protocol

from semantic_memory.domain.models import Conversation, KnowledgeSource, Memory, SearchFilters, SourceStatus


class VectorBackend(Protocol):
    """Persistence for memories, knowledge sources and conversations.

    Implementations must apply every filter before the ``top_k`` cutoff,
    order similarity results by ascending cosine distance then id, and write
    ``insert_memories`` batches all-or-nothing.
    """

    name: str

    async def ensure_schema(self, dimensions: int | None = None) -> None: ...

    async def insert_memories(self, memories: list[Memory]) -> None: ...

    async def get_memory(self, memory_id: str) -> Memory | None: ...

    async def query_similar(
        self,
        vector: list[float],
        top_k: int,
        conversation_id: str | None,
        filters: SearchFilters,
    ) -> list[tuple[Memory, float]]:
        """Return up to ``top_k`` (memory, cosine distance) pairs."""
        ...

    async def update_memory(self, memory_id: str, changes: dict[str, Any]) -> Memory | None: ...

    async def increment_access(self, memory_id: str, accessed_at: float) -> Memory | None:
        """Atomically bump access_count and set last_accessed_at."""
        ...

    async def delete_memories(self, memory_ids: list[str]) -> int: ...

    async def list_memories(
        self,
        conversation_id: str | None = None,
        after_id: str | None = None,
        limit: int = 500,
    ) -> list[Memory]:
        """Page through memories ordered by id."""
        ...

    async def count_memories(self, conversation_id: str) -> int: ...

    async def count_chunks(self, source_id: str, source_version: str) -> int: ...

    async def supersede_chunks(self, source_id: str, current_version: str, retain: bool) -> int:
        """Archive (or delete) chunks of ``source_id`` from other versions."""
        ...

    async def save_source(self, source: KnowledgeSource) -> None: ...

    async def get_source(self, source_id: str) -> KnowledgeSource | None: ...

    async def find_source(self, locator: str) -> KnowledgeSource | None: ...

    async def list_sources(self, status: SourceStatus | None = None) -> list[KnowledgeSource]: ...

    async def save_conversation(self, conversation: Conversation) -> None: ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def list_conversations(self) -> list[Conversation]: ...

    async def increment_memory_count(self, conversation_id: str, delta: int = 1) -> int | None: ...

    async def set_memory_count(self, conversation_id: str, count: int) -> None: ...

    async def health(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...
