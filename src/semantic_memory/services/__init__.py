"""Service layer interfaces and implementations."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingService(Protocol):
    """Protocol for embedding services."""

    async def embed(self, model: str, text: str) -> list[float]:
        """Generate embedding for a single text."""
        ...

    async def embed_batch(self, model: str, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts, in input order."""
        ...


__all__ = ["EmbeddingService"]
