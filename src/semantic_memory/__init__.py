"""Semantic memory engine: conversation memories and indexed knowledge behind one similarity search."""

from semantic_memory.services.engine import MemoryEngine

__version__ = "0.1.0"

__all__ = ["MemoryEngine", "__version__"]
