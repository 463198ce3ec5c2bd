"""Observable engine events.

Suppressed duplicates, cache evictions, circuit transitions and re-index
decisions are all reported here rather than happening silently.
"""

import threading
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .logging import get_logger

logger = get_logger(__name__)


class EventKind(str, Enum):
    """Kinds of events the engine reports."""

    DUPLICATE_SUPPRESSED = "duplicate_suppressed"
    MEMORY_STORED = "memory_stored"
    MEMORY_ACCESSED = "memory_accessed"

    CACHE_EVICTED = "cache_evicted"
    CACHE_EXPIRED = "cache_expired"
    CACHE_DRAINED = "cache_drained"

    CIRCUIT_OPENED = "circuit_opened"
    CIRCUIT_HALF_OPEN = "circuit_half_open"
    CIRCUIT_CLOSED = "circuit_closed"
    RETRY_SCHEDULED = "retry_scheduled"

    SOURCE_STATUS_CHANGED = "source_status_changed"
    REINDEX_SKIPPED = "reindex_skipped"
    REINDEX_STARTED = "reindex_started"
    REINDEX_RESUMED = "reindex_resumed"
    CHUNKS_SUPERSEDED = "chunks_superseded"

    CONVERSATION_CREATED = "conversation_created"
    CONVERSATION_ARCHIVED = "conversation_archived"
    COUNT_RECONCILED = "count_reconciled"
    RELEVANCE_REFRESHED = "relevance_refreshed"


# Events logged at INFO, everything else at DEBUG
_INFO_KINDS = frozenset(
    {
        EventKind.DUPLICATE_SUPPRESSED,
        EventKind.CIRCUIT_OPENED,
        EventKind.CIRCUIT_HALF_OPEN,
        EventKind.CIRCUIT_CLOSED,
        EventKind.SOURCE_STATUS_CHANGED,
        EventKind.REINDEX_SKIPPED,
        EventKind.REINDEX_STARTED,
        EventKind.REINDEX_RESUMED,
        EventKind.CHUNKS_SUPERSEDED,
        EventKind.CONVERSATION_ARCHIVED,
        EventKind.COUNT_RECONCILED,
    }
)


class EngineEvent(BaseModel):
    """A single reportable occurrence."""

    kind: EventKind
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    attributes: dict[str, Any] = Field(default_factory=dict)


EventListener = Callable[[EngineEvent], None]


class EventRecorder:
    """Collects events, logs them, and fans them out to listeners.

    History is bounded; the oldest events are discarded first.
    """

    def __init__(self, history_size: int = 1000) -> None:
        self._history: deque[EngineEvent] = deque(maxlen=history_size)
        self._listeners: list[EventListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def emit(self, kind: EventKind, **attributes: Any) -> EngineEvent:
        event = EngineEvent(kind=kind, attributes=attributes)
        with self._lock:
            self._history.append(event)
            listeners = list(self._listeners)

        if kind in _INFO_KINDS:
            logger.info(kind.value, **attributes)
        else:
            logger.debug(kind.value, **attributes)

        for listener in listeners:
            listener(event)
        return event

    @property
    def events(self) -> list[EngineEvent]:
        with self._lock:
            return list(self._history)

    def of_kind(self, kind: EventKind) -> list[EngineEvent]:
        return [event for event in self.events if event.kind == kind]

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
