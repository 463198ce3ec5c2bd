from .base import ErrorCode, ErrorLevel, ServiceErrorDetails
from .circuit_breaker import CircuitBreaker, CircuitState, RetryWithCircuitBreaker
from .errors import (
    CircuitOpenError,
    ConflictError,
    DatastoreError,
    PartialFailureError,
    ServiceUnavailableError,
    ValidationError,
)
from .events import EngineEvent, EventKind, EventRecorder
