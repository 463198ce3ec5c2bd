"""structlog + logfire logging for the engine.

Call ``setup_logging`` once from the host process; until then structlog's
defaults apply. Use ``log_context`` to tag every line emitted by an
operation with its conversation or source id.
"""

from .context import (
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
    update_log_context,
)
from .setup import get_logger, setup_logging

__all__ = [
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "log_context",
    "set_log_context",
    "setup_logging",
    "update_log_context",
]
