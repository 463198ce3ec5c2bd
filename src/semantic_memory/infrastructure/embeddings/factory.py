"""Builds a configured embedding gateway.

Components receive their configuration injected; this module is the one
place that reads ``Settings`` to wire provider, cache and resilience
together.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from semantic_memory.core.base import ErrorCode, ValidationErrorDetails
from semantic_memory.core.circuit_breaker import CircuitBreaker, CircuitPolicy, RetryPolicy
from semantic_memory.core.errors import ValidationError
from semantic_memory.core.events import EventRecorder
from semantic_memory.core.logging import get_logger

from .cache import EmbeddingCache
from .dimensions import ModelDimensionRegistry
from .gateway import EmbeddingGateway
from .ollama import OllamaEmbeddingClient
from .voyage import VoyageEmbeddingClient

if TYPE_CHECKING:
    from semantic_memory.core.config import Settings

    from .base import EmbeddingProvider

logger = get_logger(__name__)


def create_embedding_provider(settings: Settings) -> EmbeddingProvider:
    """Instantiate the provider named by ``settings.embedding_provider``."""
    if settings.embedding_provider == "ollama":
        return OllamaEmbeddingClient(host=settings.ollama_host, timeout=settings.timeouts.embedding_seconds)
    if settings.embedding_provider == "voyage":
        return VoyageEmbeddingClient(
            api_key=settings.voyage_api_key.get_secret_value(),
            timeout=settings.timeouts.embedding_seconds,
        )
    raise ValidationError(
        message=f"Unknown embedding provider: {settings.embedding_provider}",
        details=ValidationErrorDetails(
            source="embedding_factory",
            operation="create_provider",
            field="embedding_provider",
            actual_value=settings.embedding_provider,
        ),
        code=ErrorCode.CONFIG_INVALID,
    )


def build_embedding_gateway(
    settings: Settings,
    provider: EmbeddingProvider | None = None,
    events: EventRecorder | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> EmbeddingGateway:
    """Wire provider, cache, breaker and retry from configuration.

    Example:
        ```python
        gateway = build_embedding_gateway(settings)
        vector = await gateway.embed(settings.embedding_model, "hello")
        ```
    """
    events = events or EventRecorder()
    provider = provider or create_embedding_provider(settings)

    cache = EmbeddingCache(
        capacity=settings.cache.capacity,
        ttl_seconds=settings.cache.ttl_seconds,
        clock=clock,
        events=events,
    )
    breaker = CircuitBreaker(
        name=f"{provider.name}_embeddings",
        policy=CircuitPolicy(
            failure_threshold=settings.circuit_breaker.failure_threshold,
            window_seconds=settings.circuit_breaker.window_seconds,
            cooldown_seconds=settings.circuit_breaker.cooldown_seconds,
        ),
        clock=clock,
        events=events,
    )
    retry_policy = RetryPolicy(
        max_attempts=settings.retry.max_attempts,
        initial_delay=settings.retry.initial_delay,
        backoff_factor=settings.retry.backoff_factor,
        max_delay=settings.retry.max_delay,
    )

    logger.info(
        "Creating embedding gateway",
        provider=provider.name,
        model=settings.embedding_model,
        cache_capacity=settings.cache.capacity,
    )
    return EmbeddingGateway(
        provider=provider,
        cache=cache,
        dimensions=ModelDimensionRegistry(settings.embedding_dimensions),
        circuit_breaker=breaker,
        retry_policy=retry_policy,
        timeout_seconds=settings.timeouts.embedding_seconds,
        max_concurrency=settings.pool_size,
        events=events,
        sleep=sleep,
    )
