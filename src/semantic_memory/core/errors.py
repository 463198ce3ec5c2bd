"""Specific error types for the semantic memory engine."""

from .base import (
    AIServiceErrorDetails,
    ApplicationError,
    DatabaseErrorDetails,
    ErrorCode,
    ErrorDetails,
    ErrorLevel,
    PartialFailureDetails,
    ServiceErrorDetails,
)


class ValidationError(ApplicationError):
    """Malformed input. Never retried."""

    def __init__(
        self,
        message: str,
        details: ErrorDetails | dict | None = None,
        code: ErrorCode = ErrorCode.INVALID_INPUT,
    ):
        super().__init__(
            message=message,
            code=code,
            level=ErrorLevel.WARNING,
            details=details,
        )


class ConflictError(ApplicationError):
    """Write rejected because of the current state of the target. Not retried."""

    def __init__(self, message: str, details: ErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.CONFLICT,
            level=ErrorLevel.WARNING,
            details=details,
        )


class ServiceUnavailableError(ApplicationError):
    """Embedding service unreachable after retries, or short-circuited."""

    def __init__(
        self,
        message: str,
        details: ServiceErrorDetails | None = None,
        code: ErrorCode = ErrorCode.SERVICE_UNAVAILABLE,
    ):
        super().__init__(
            message=message,
            code=code,
            level=ErrorLevel.ERROR,
            details=details
            or ServiceErrorDetails(
                source="service",
                operation="external_call",
                service_name="unknown",
            ),
        )


class CircuitOpenError(ServiceUnavailableError):
    """Raised without calling the service while the circuit is open."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.CIRCUIT_OPEN)


class DatastoreError(ApplicationError):
    """Connection failure or query timeout against the backing store."""

    def __init__(
        self,
        message: str,
        details: DatabaseErrorDetails | None = None,
        code: ErrorCode = ErrorCode.DB_QUERY,
    ):
        super().__init__(
            message=message,
            code=code,
            level=ErrorLevel.ERROR,
            details=details
            or DatabaseErrorDetails(
                source="vector_store",
                operation="query",
                service_name="datastore",
            ),
        )


class PartialFailureError(ApplicationError):
    """A batch or indexing job committed only part of its work."""

    def __init__(self, message: str, details: PartialFailureDetails):
        super().__init__(
            message=message,
            code=ErrorCode.PARTIAL_FAILURE,
            level=ErrorLevel.ERROR,
            details=details,
        )
        self.job_id = details.job_id
        self.succeeded = details.succeeded
        self.failed = details.failed


# Embedding provider error kinds. The gateway's retry and circuit policy keys off these.


class ModelNotFoundError(ValidationError):
    """The requested embedding model is unknown to the service."""

    def __init__(self, message: str, details: ErrorDetails | dict | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.MODEL_NOT_FOUND)


class MalformedInputError(ValidationError):
    """The service rejected the input or returned an unusable response."""

    def __init__(self, message: str, details: ErrorDetails | dict | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.EMBEDDING_FAILED)


class TransientServiceError(ApplicationError):
    """Failure class that may succeed on retry."""

    def __init__(
        self,
        message: str,
        details: AIServiceErrorDetails | None = None,
        code: ErrorCode = ErrorCode.SERVICE_UNREACHABLE,
    ):
        super().__init__(
            message=message,
            code=code,
            level=ErrorLevel.WARNING,
            details=details
            or AIServiceErrorDetails(
                source="embedding_provider",
                operation="generate",
                service_name="embedding",
            ),
        )


class ServiceUnreachableError(TransientServiceError):
    """Connection refused, reset, or a server-side failure."""


class EmbeddingTimeoutError(TransientServiceError):
    """The embedding call exceeded its time budget."""

    def __init__(self, message: str, details: AIServiceErrorDetails | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.TIMEOUT)
