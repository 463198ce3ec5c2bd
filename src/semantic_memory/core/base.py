"""Error vocabulary shared by every layer: severities, codes and structured details."""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from logfire.integrations.pydantic import PluginSettings
from pydantic import BaseModel, Field, field_serializer


class ErrorLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def logging_level(self) -> int:
        """Numeric level for the stdlib logging bridge"""
        return logging.getLevelName(self.name)


class ErrorCode(str, Enum):
    """Stable codes surfaced to callers.

    The leading digit groups the code by the layer that raises it:
    1 for caller input and engine state, 2 for resilience guards,
    3 for the datastore, 4 for embedding providers and 5 for anything
    the caller should retry after a pause.
    """

    UNKNOWN = "1000"
    INVALID_INPUT = "1001"
    NOT_FOUND = "1002"
    CONFLICT = "1003"
    CONFIG_INVALID = "1004"
    PARTIAL_FAILURE = "1005"
    TIMEOUT = "1006"

    CIRCUIT_OPEN = "2001"

    DB_CONNECTION = "3001"
    DB_QUERY = "3002"
    DB_VALIDATION = "3003"
    DB_TIMEOUT = "3004"

    MODEL_NOT_FOUND = "4001"
    EMBEDDING_FAILED = "4002"
    DIMENSION_MISMATCH = "4003"

    SERVICE_UNAVAILABLE = "5001"
    SERVICE_UNREACHABLE = "5002"


class ErrorDetails(BaseModel, plugin_settings=PluginSettings(logfire={"record": "all"})):
    """Where and when a failure happened"""

    source: str = Field(description="Component that raised the error")
    operation: str = Field(description="Engine operation in progress")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        return timestamp.isoformat()


class ValidationErrorDetails(ErrorDetails):
    field: str | None = Field(None, description="Offending input field")
    actual_value: Any = None
    expected_type: str | None = None
    constraint: str | None = Field(None, description="Rule the value broke, e.g. 'top_k >= 1'")


class ResourceErrorDetails(ErrorDetails):
    resource_type: str = Field(description="conversation, memory or source")
    resource_id: str | None = None
    action: str = Field(description="What the caller tried to do with the resource")


class ServiceErrorDetails(ErrorDetails):
    """A dependency (datastore or embedding provider) misbehaved"""

    service_name: str
    endpoint: str | None = None
    status_code: int | None = None
    retry_after_seconds: float | None = Field(None, description="How long the caller should back off")


class DatabaseErrorDetails(ServiceErrorDetails):
    query_type: str | None = Field(None, description="similarity, insert, transition and so on")
    table: str | None = Field(None, description="Node label the query touched")


class AIServiceErrorDetails(ServiceErrorDetails):
    model_name: str | None = None


class PartialFailureDetails(ErrorDetails):
    """Progress of a batch or indexing job that stopped midway"""

    job_id: str = Field(description="Handle the caller passes back to resume")
    succeeded: int
    failed: int
    cause: str | None = None


class ApplicationError(Exception):
    """Root of the engine's error hierarchy.

    ``details`` may be given as a model or as a plain mapping; a mapping
    is folded into :class:`ErrorDetails`, with ``source`` and
    ``operation`` falling back to ``"unknown"``.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        level: ErrorLevel = ErrorLevel.ERROR,
        details: ErrorDetails | dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.level = level
        self.details = self._coerce_details(details)

    @staticmethod
    def _coerce_details(details: ErrorDetails | dict[str, Any] | None) -> ErrorDetails:
        if isinstance(details, ErrorDetails):
            return details
        fields = dict(details or {})
        fields.setdefault("source", "unknown")
        fields.setdefault("operation", "unknown")
        return ErrorDetails(**fields)
