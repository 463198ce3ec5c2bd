"""Voyage AI embedding client."""

from typing import Any, cast

import voyageai

from semantic_memory.core.base import ServiceErrorDetails
from semantic_memory.core.errors import (
    EmbeddingTimeoutError,
    MalformedInputError,
    ModelNotFoundError,
    ServiceUnavailableError,
    ServiceUnreachableError,
    TransientServiceError,
)
from semantic_memory.core.logging import get_logger

from .base import provider_error_details

logger = get_logger(__name__)


class VoyageEmbeddingClient:
    """Hosted embedding provider backed by the voyageai SDK.

    The SDK's own retries are disabled; retry and circuit breaking belong to
    the gateway.
    """

    name = "voyage"

    def __init__(self, api_key: str, timeout: float = 30.0, client: Any = None) -> None:
        if not api_key and client is None:
            raise ServiceUnavailableError(
                message="Voyage API key not configured",
                details=ServiceErrorDetails(
                    source="voyage_embedding",
                    operation="initialization",
                    service_name="voyage",
                ),
            )
        # voyageai client doesn't expose a public type
        self.client = client or voyageai.AsyncClient(api_key=api_key, max_retries=0, timeout=timeout)

    async def generate(self, model: str, text: str) -> list[float]:
        try:
            response = await self.client.embed(texts=[text], model=model)
        except Exception as e:
            raise self._handle_error(e, model) from e

        embeddings = getattr(response, "embeddings", [])
        if not embeddings or not embeddings[0]:
            raise MalformedInputError(
                message=f"Voyage returned no embedding for model '{model}'",
                details=provider_error_details(self.name, "generate", model, "/embeddings", 200),
            )
        try:
            return [float(value) for value in cast("list[float]", embeddings[0])]
        except (TypeError, ValueError) as e:
            raise MalformedInputError(
                message=f"Voyage returned non-numeric values for model '{model}'",
                details=provider_error_details(self.name, "generate", model, "/embeddings", 200),
            ) from e

    def _handle_error(
        self,
        e: Exception,
        model: str,
    ) -> ModelNotFoundError | MalformedInputError | TransientServiceError:
        """Map SDK errors to our exception types."""
        error_msg = str(e).lower()
        status = getattr(e, "http_status", None)
        details = provider_error_details(self.name, "generate", model, "/embeddings", status)

        if "model" in error_msg and ("not found" in error_msg or "not supported" in error_msg or "invalid" in error_msg):
            return ModelNotFoundError(message=f"Voyage model '{model}' is not available: {e!s}", details=details)
        if "timeout" in error_msg or "timed out" in error_msg:
            return EmbeddingTimeoutError(message=f"Voyage request timed out: {e!s}", details=details)
        if (
            "rate limit" in error_msg
            or "connection" in error_msg
            or "unavailable" in error_msg
            or (status is not None and (status == 429 or status >= 500))
        ):
            return ServiceUnreachableError(message=f"Voyage service unreachable: {e!s}", details=details)
        return MalformedInputError(message=f"Voyage rejected the embedding request: {e!s}", details=details)

    async def health(self) -> dict[str, Any]:
        # Voyage has no free listing endpoint; report configuration only
        return {"status": "configured", "provider": self.name}

    async def close(self) -> None:
        # voyageai's AsyncClient holds no connection that needs closing
        logger.debug("Voyage client closed")
