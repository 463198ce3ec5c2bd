"""Logging context utilities for structured logging.

Request-scoped keys (conversation id, source id, operation name) are bound to
structlog's context variables so every log line emitted while an engine
operation runs carries them, including lines from nested components.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    return dict(structlog.contextvars.get_contextvars())


def set_log_context(context: dict[str, Any]) -> None:
    """Replace the logging context.

    Args:
        context: Dictionary with logging context data
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**context)


def update_log_context(key: str, value: Any) -> None:
    """Update a single key in the logging context.

    Args:
        key: Context key to update
        value: Value to set
    """
    structlog.contextvars.bind_contextvars(**{key: value})


def clear_log_context() -> None:
    """Clear the current logging context."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind keys for the duration of a block, restoring the previous values after."""
    # None values are skipped so optional identifiers don't clutter output
    bound = {key: value for key, value in values.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield
