"""Embedding gateway: cache, resilience and dimension checks around a provider."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from semantic_memory.core.base import ValidationErrorDetails
from semantic_memory.core.circuit_breaker import CircuitBreaker, RetryPolicy, RetryWithCircuitBreaker
from semantic_memory.core.errors import EmbeddingTimeoutError, ValidationError
from semantic_memory.core.events import EventRecorder
from semantic_memory.core.logging import get_logger

from .base import EmbeddingProvider, provider_error_details
from .cache import EmbeddingCache, normalize_text
from .dimensions import ModelDimensionRegistry

logger = get_logger(__name__)


class EmbeddingGateway:
    """Uniform ``embed`` / ``embed_batch`` interface over an embedding provider.

    Every request checks the cache first. On a miss the provider is called
    under a per-call timeout through retry and the circuit breaker, the
    vector's dimension is checked against the model's, and the result is
    cached before it is returned.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: EmbeddingCache | None = None,
        dimensions: ModelDimensionRegistry | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float = 30.0,
        max_concurrency: int = 16,
        events: EventRecorder | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.events = events or EventRecorder()
        self.cache = cache
        self.dimensions = dimensions or ModelDimensionRegistry()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name=f"{provider.name}_embeddings", events=self.events)
        self.retry = RetryWithCircuitBreaker(self.circuit_breaker, retry_policy, sleep=sleep)
        self.timeout_seconds = timeout_seconds
        self.max_concurrency = max(1, max_concurrency)

    async def _generate(self, model: str, text: str) -> list[float]:
        """One provider call; a single circuit breaker observation."""
        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await self.provider.generate(model, text)
        except TimeoutError as e:
            raise EmbeddingTimeoutError(
                message=f"Embedding call exceeded {self.timeout_seconds}s",
                details=provider_error_details(self.provider.name, "generate", model),
            ) from e

    async def embed(self, model: str, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            ValidationError: Empty text, unknown model, or a dimension mismatch
            ServiceUnavailableError: The service stayed unreachable or the circuit is open
        """
        normalized = normalize_text(text)
        if not normalized:
            raise ValidationError(
                message="Cannot embed empty text",
                details=ValidationErrorDetails(
                    source="embedding_gateway",
                    operation="embed",
                    field="text",
                    actual_value=text[:50],
                ),
            )

        if self.cache is not None:
            cached = self.cache.get(model, normalized)
            if cached is not None:
                logger.debug("Embedding cache hit", model=model, text_preview=normalized[:50])
                return cached

        vector = await self.retry.call_async(self._generate, model, normalized)
        self.dimensions.check(model, vector, operation="embed")

        if self.cache is not None:
            self.cache.put(model, normalized, vector)
        return vector

    async def embed_batch(self, model: str, texts: list[str]) -> list[list[float]]:
        """Embed many texts with bounded concurrency, preserving input order.

        Workers pull from a shared iterator, so once the batch is cancelled or
        a sub-call fails no further sub-calls are issued. Sub-calls already
        in flight are shielded and run to completion.
        """
        if not texts:
            return []

        results: list[list[float] | None] = [None] * len(texts)
        pending = iter(enumerate(texts))

        async def worker() -> None:
            for index, text in pending:
                results[index] = await asyncio.shield(self.embed(model, text))

        workers = [asyncio.create_task(worker()) for _ in range(min(self.max_concurrency, len(texts)))]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        return [vector for vector in results if vector is not None]

    async def health(self) -> dict[str, Any]:
        status = await self.provider.health()
        status["circuit"] = self.circuit_breaker.get_state()
        if self.cache is not None:
            status["cache"] = self.cache.stats()
        return status

    async def close(self) -> None:
        if self.cache is not None:
            self.cache.drain()
        await self.provider.close()
