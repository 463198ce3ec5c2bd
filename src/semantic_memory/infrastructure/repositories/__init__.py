from .vector_store import VectorStore, similarity_from_distance

__all__ = ["VectorStore", "similarity_from_distance"]
