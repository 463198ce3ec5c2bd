"""Error handlers that turn engine errors into caller-facing reports"""

from typing import Any

from .base import ApplicationError, ErrorCode, ErrorLevel
from .error_context import ErrorContext, ErrorContextManager
from .errors import (
    CircuitOpenError,
    ConflictError,
    DatastoreError,
    PartialFailureError,
    ServiceUnavailableError,
    ValidationError,
)

_SUGGESTED_SOLUTIONS: list[tuple[type[Exception], str]] = [
    (CircuitOpenError, "The embedding service is failing; retry after the cooldown"),
    (ServiceUnavailableError, "The embedding service is unavailable; retry later"),
    (DatastoreError, "The datastore did not respond; check connectivity and retry"),
    (ConflictError, "The target does not accept this write; do not retry automatically"),
    (PartialFailureError, "Retry the job to resume from the last committed unit"),
    (ValidationError, "Fix the request; it will not succeed on retry"),
]


def suggested_solution(error: Exception) -> str | None:
    for error_type, solution in _SUGGESTED_SOLUTIONS:
        if isinstance(error, error_type):
            return solution
    return None


def is_retryable(error: Exception) -> bool:
    """Whether a caller may usefully retry the failed operation."""
    return isinstance(error, ServiceUnavailableError | DatastoreError | PartialFailureError)


class ErrorHandler:
    """Formats errors for the calling shell"""

    def __init__(self, context_manager: ErrorContextManager | None = None):
        self.context_manager = context_manager or ErrorContextManager()

    def _format_response(self, error_context: ErrorContext, level: ErrorLevel) -> dict[str, Any]:
        error = error_context.error
        response: dict[str, Any] = {
            "error": str(error),
            "error_type": type(error).__name__,
            "error_code": ErrorCode.UNKNOWN.value,
            "level": level.value,
            "retryable": is_retryable(error),
            "trace_id": error_context.trace_id,
            "timestamp": error_context.timestamp.isoformat(),
        }

        # Include rich structured data if it's an ApplicationError
        if isinstance(error, ApplicationError):
            response["error_code"] = error.code.value
            response["details"] = error.details.model_dump(mode="json")

        solution = suggested_solution(error)
        if solution:
            response["suggested_solution"] = solution

        return response

    def handle(self, error: Exception, **context: Any) -> dict[str, Any]:
        """Build a structured report for an error"""
        level = error.level if isinstance(error, ApplicationError) else ErrorLevel.ERROR
        error_context = self.context_manager.capture_context(error, **context)
        return self._format_response(error_context, level)
