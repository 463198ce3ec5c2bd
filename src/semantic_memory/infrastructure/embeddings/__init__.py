from .base import EmbeddingProvider
from .cache import EmbeddingCache, cache_key, normalize_text
from .dimensions import ModelDimensionRegistry
from .factory import build_embedding_gateway, create_embedding_provider
from .gateway import EmbeddingGateway
from .ollama import OllamaEmbeddingClient
from .voyage import VoyageEmbeddingClient

__all__ = [
    "EmbeddingCache",
    "EmbeddingGateway",
    "EmbeddingProvider",
    "ModelDimensionRegistry",
    "OllamaEmbeddingClient",
    "VoyageEmbeddingClient",
    "build_embedding_gateway",
    "cache_key",
    "create_embedding_provider",
    "normalize_text",
]
