"""Ollama embedding client."""

import math
from typing import Any

import httpx

from semantic_memory.core.errors import (
    EmbeddingTimeoutError,
    MalformedInputError,
    ModelNotFoundError,
    ServiceUnreachableError,
)
from semantic_memory.core.logging import get_logger

from .base import provider_error_details

logger = get_logger(__name__)

EMBED_ENDPOINT = "/api/embed"
TAGS_ENDPOINT = "/api/tags"


class OllamaEmbeddingClient:
    """Calls a local Ollama runtime over HTTP.

    Errors are mapped onto the engine's provider error kinds:

    - connection failures and 5xx responses are ``ServiceUnreachableError``
    - request timeouts are ``EmbeddingTimeoutError``
    - 404 or a "model not found" body is ``ModelNotFoundError``
    - other 4xx responses and unusable bodies are ``MalformedInputError``
    """

    name = "ollama"

    def __init__(
        self,
        host: str = "http://127.0.0.1:11434",
        timeout: float = 30.0,
        health_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.health_timeout = health_timeout
        self.client = httpx.AsyncClient(base_url=self.host, timeout=timeout, transport=transport)

    async def generate(self, model: str, text: str) -> list[float]:
        try:
            response = await self.client.post(EMBED_ENDPOINT, json={"model": model, "input": text})
        except httpx.TimeoutException as e:
            raise EmbeddingTimeoutError(
                message=f"Ollama embedding request timed out: {e!s}",
                details=provider_error_details(self.name, "generate", model, EMBED_ENDPOINT, 408),
            ) from e
        except httpx.TransportError as e:
            raise ServiceUnreachableError(
                message=f"Cannot connect to Ollama at {self.host}: {e!s}",
                details=provider_error_details(self.name, "generate", model, EMBED_ENDPOINT),
            ) from e

        if response.status_code >= 400:
            raise self._handle_error(response, model)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedInputError(
                message="Ollama returned a non-JSON embedding response",
                details=provider_error_details(self.name, "generate", model, EMBED_ENDPOINT, response.status_code),
            ) from e

        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        first = embeddings[0] if isinstance(embeddings, list) and embeddings else None
        if not isinstance(first, list) or not first:
            raise MalformedInputError(
                message=f"Ollama returned no embedding for model '{model}'",
                details=provider_error_details(self.name, "generate", model, EMBED_ENDPOINT, response.status_code),
            )

        try:
            vector = [float(value) for value in first]
        except (TypeError, ValueError) as e:
            raise MalformedInputError(
                message=f"Ollama returned non-numeric values for model '{model}'",
                details=provider_error_details(self.name, "generate", model, EMBED_ENDPOINT, response.status_code),
            ) from e
        if not all(math.isfinite(value) for value in vector):
            raise MalformedInputError(
                message=f"Ollama returned non-finite values for model '{model}'",
                details=provider_error_details(self.name, "generate", model, EMBED_ENDPOINT, response.status_code),
            )
        return vector

    def _handle_error(
        self,
        response: httpx.Response,
        model: str,
    ) -> ModelNotFoundError | MalformedInputError | ServiceUnreachableError:
        """Map an error response to our exception types."""
        try:
            message = str(response.json().get("error", ""))
        except ValueError:
            message = response.text
        details = provider_error_details(self.name, "generate", model, EMBED_ENDPOINT, response.status_code)

        if response.status_code == 404 or ("model" in message.lower() and "not found" in message.lower()):
            return ModelNotFoundError(
                message=f"Embedding model '{model}' is not available on Ollama: {message}",
                details=details,
            )
        if response.status_code >= 500:
            return ServiceUnreachableError(
                message=f"Ollama failed with status {response.status_code}: {message}",
                details=details,
            )
        return MalformedInputError(
            message=f"Ollama rejected the embedding request: {message or response.status_code}",
            details=details,
        )

    async def health(self) -> dict[str, Any]:
        try:
            response = await self.client.get(TAGS_ENDPOINT, timeout=self.health_timeout)
            response.raise_for_status()
            models = response.json().get("models") or []
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Ollama health check failed", host=self.host, error=str(e))
            return {
                "status": "unhealthy",
                "host": self.host,
                "error": f"Cannot connect to Ollama at {self.host}",
            }
        return {"status": "healthy", "host": self.host, "models_count": len(models)}

    async def close(self) -> None:
        await self.client.aclose()
