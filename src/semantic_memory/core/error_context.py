"""Per-failure context snapshots keyed by trace id"""

from collections import OrderedDict
from datetime import UTC, datetime
from types import TracebackType
from typing import Any
from uuid import uuid4

from .base import ApplicationError
from .logging import get_log_context, get_logger

logger = get_logger(__name__)

# Snapshots kept per manager; the oldest are dropped first
MAX_TRACKED_CONTEXTS = 256


class ErrorContext:
    """An error plus the operation keys that were bound when it was raised.

    Keys bound with ``log_context`` (conversation_id, source_id and so on)
    are merged with anything passed explicitly; explicit keys win.
    """

    def __init__(self, error: Exception, trace_id: str | None = None, **context: Any):
        self.error = error
        self.trace_id = trace_id or uuid4().hex
        self.timestamp = datetime.now(UTC)
        self.context = get_log_context() | context

    def to_dict(self) -> dict[str, Any]:
        """Flat mapping for log records; details and context keys are namespaced"""
        flat: dict[str, Any] = {
            "error_type": type(self.error).__name__,
            "error_message": str(self.error),
            "trace_id": self.trace_id,
            "timestamp": self.timestamp.isoformat(),
        }
        if isinstance(self.error, ApplicationError):
            flat["error_code"] = self.error.code.value
            flat["error_level"] = self.error.level.value
            flat.update({f"details.{k}": v for k, v in self.error.details.model_dump().items()})
        flat.update({f"context.{k}": v for k, v in self.context.items()})
        return flat


class ErrorContextManager:
    """Registry of recent error contexts, also usable as a (sync or async) context manager.

    As a context manager it snapshots the error it was built with on entry
    and reports any *new* exception raised while that error was being
    handled.
    """

    def __init__(self, error: Exception | None = None, **context: Any) -> None:
        self._contexts: OrderedDict[str, ErrorContext] = OrderedDict()
        self._error = error
        self._context = context

    def capture_context(self, error: Exception, **context: Any) -> ErrorContext:
        snapshot = ErrorContext(error, **context)
        self._contexts[snapshot.trace_id] = snapshot
        while len(self._contexts) > MAX_TRACKED_CONTEXTS:
            self._contexts.popitem(last=False)
        return snapshot

    def get_context(self, trace_id: str) -> ErrorContext | None:
        return self._contexts.get(trace_id)

    def __enter__(self) -> ErrorContext:
        if self._error is None:
            raise ValueError("ErrorContextManager needs an error to enter")
        return self.capture_context(self._error, **self._context)

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_val is not None and exc_val is not self._error:
            logger.error(f"{type(exc_val).__name__} raised while handling {self._error!r}", exc_info=exc_val)

    async def __aenter__(self) -> ErrorContext:
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)
