"""Embedding provider interface."""

from typing import Any, Protocol

from semantic_memory.core.base import AIServiceErrorDetails


class EmbeddingProvider(Protocol):
    """Protocol for external embedding services.

    ``generate`` must raise distinguishable error kinds so the gateway can
    decide what to retry:

    - ``ModelNotFoundError`` when the model is unknown
    - ``MalformedInputError`` when the input or response is unusable
    - ``ServiceUnreachableError`` / ``EmbeddingTimeoutError`` for transient failures
    """

    name: str

    async def generate(self, model: str, text: str) -> list[float]:
        """Generate an embedding for a single text."""
        ...

    async def health(self) -> dict[str, Any]:
        """Report whether the service is reachable."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...


def provider_error_details(
    provider: str,
    operation: str,
    model: str | None = None,
    endpoint: str | None = None,
    status_code: int | None = None,
) -> AIServiceErrorDetails:
    return AIServiceErrorDetails(
        source=f"{provider}_embedding",
        operation=operation,
        service_name=provider,
        endpoint=endpoint,
        status_code=status_code,
        model_name=model,
    )
