from .base import VectorBackend
from .memory_backend import InMemoryVectorBackend, cosine_distances
from .neo4j_backend import Neo4jVectorBackend

__all__ = ["InMemoryVectorBackend", "Neo4jVectorBackend", "VectorBackend", "cosine_distances"]
