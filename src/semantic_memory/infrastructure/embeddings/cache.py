"""In-process embedding cache with LRU eviction and a time-to-live."""

import hashlib
import re
import threading
import time
import unicodedata
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from semantic_memory.core.events import EventKind, EventRecorder
from semantic_memory.core.logging import get_logger

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Canonical form used for both cache keys and provider calls."""
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFC", text)).strip()


def cache_key(model: str, text: str) -> str:
    """Key an embedding by model and normalised text to prevent cross-model contamination."""
    return hashlib.sha256(f"{model}\x00{normalize_text(text)}".encode()).hexdigest()


@dataclass
class _Entry:
    vector: tuple[float, ...]
    expires_at: float


class EmbeddingCache:
    """Bounded (model, text) → vector cache.

    Entries are evicted least-recently-used once ``capacity`` is reached and
    expire ``ttl_seconds`` after insertion regardless of use. Reading an
    expired entry removes it and reports a miss. One lock guards the map so
    the move-to-end on a hit is atomic with the lookup.

    The cache holds no durable state; dropping it only costs extra provider
    calls.
    """

    def __init__(
        self,
        capacity: int = 10_000,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
        events: EventRecorder | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.events = events or EventRecorder()
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def get(self, model: str, text: str) -> list[float] | None:
        key = cache_key(model, text)
        expired = False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self.clock() >= entry.expires_at:
                del self._entries[key]
                self.misses += 1
                self.expirations += 1
                expired = True
            else:
                self._entries.move_to_end(key)
                self.hits += 1
                vector = list(entry.vector)

        if expired:
            self.events.emit(EventKind.CACHE_EXPIRED, model=model, key=key[:16])
            return None
        return vector

    def put(self, model: str, text: str, vector: list[float]) -> None:
        key = cache_key(model, text)
        evicted: list[str] = []
        with self._lock:
            self._entries[key] = _Entry(tuple(vector), self.clock() + self.ttl_seconds)
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                old_key, _ = self._entries.popitem(last=False)
                evicted.append(old_key)
            self.evictions += len(evicted)

        for old_key in evicted:
            self.events.emit(EventKind.CACHE_EVICTED, key=old_key[:16], reason="capacity")

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self.clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
            self.expirations += len(expired)
        for key in expired:
            self.events.emit(EventKind.CACHE_EXPIRED, key=key[:16])
        return len(expired)

    def drain(self) -> int:
        """Empty the cache, e.g. on shutdown."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        self.events.emit(EventKind.CACHE_DRAINED, entries=count)
        logger.info("Embedding cache drained", entries=count)
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "ttl_seconds": self.ttl_seconds,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "expirations": self.expirations,
            }
