import pytest

from semantic_memory.core.base import (
    DatabaseErrorDetails,
    ErrorCode,
    ErrorLevel,
    PartialFailureDetails,
    ServiceErrorDetails,
)
from semantic_memory.core.decorators import with_error_handling
from semantic_memory.core.errors import (
    CircuitOpenError,
    ConflictError,
    DatastoreError,
    PartialFailureError,
    ServiceUnavailableError,
    ValidationError,
)
from semantic_memory.core.handlers import ErrorHandler, is_retryable, suggested_solution
from semantic_memory.core.logging import log_context


def partial_failure() -> PartialFailureError:
    return PartialFailureError(
        message="stopped after 2 of 5 chunks",
        details=PartialFailureDetails(source="indexer", operation="index", job_id="s1", succeeded=2, failed=3),
    )


@pytest.mark.parametrize(
    ("error", "retryable"),
    [
        (ValidationError("bad input"), False),
        (ConflictError("archived"), False),
        (ServiceUnavailableError("down"), True),
        (CircuitOpenError("open"), True),
        (DatastoreError("timeout", DatabaseErrorDetails(source="s", operation="o", service_name="neo4j")), True),
        (partial_failure(), True),
        (RuntimeError("boom"), False),
    ],
)
def test_retryable_classification(error, retryable):
    assert is_retryable(error) is retryable


def test_most_specific_solution_wins():
    assert "cooldown" in suggested_solution(CircuitOpenError("open"))
    assert "retry later" in suggested_solution(ServiceUnavailableError("down"))
    assert suggested_solution(RuntimeError("boom")) is None


def test_partial_failure_carries_resume_handle():
    error = partial_failure()
    assert error.job_id == "s1"
    assert error.succeeded == 2
    assert error.failed == 3
    assert error.code == ErrorCode.PARTIAL_FAILURE


def test_dict_details_are_converted():
    error = ValidationError("bad", details={"source": "api", "operation": "store", "field": "content"})
    assert error.details.source == "api"
    assert error.details.operation == "store"


def test_handler_report_for_application_error():
    error = ServiceUnavailableError(
        "embedding service down; retry later",
        details=ServiceErrorDetails(source="gateway", operation="embed", service_name="ollama"),
    )

    report = ErrorHandler().handle(error, conversation_id="c1")

    assert report["error_code"] == ErrorCode.SERVICE_UNAVAILABLE.value
    assert report["level"] == ErrorLevel.ERROR.value
    assert report["retryable"] is True
    assert report["details"]["service_name"] == "ollama"
    assert "suggested_solution" in report


def test_handler_report_for_unexpected_error():
    report = ErrorHandler().handle(KeyError("x"))

    assert report["error_code"] == ErrorCode.UNKNOWN.value
    assert report["error_type"] == "KeyError"
    assert "details" not in report


def test_handler_keeps_context_for_lookup():
    handler = ErrorHandler()
    with log_context(operation="store_memory"):
        report = handler.handle(ValidationError("bad"), extra="value")

    context = handler.context_manager.get_context(report["trace_id"])
    assert context.context["operation"] == "store_memory"
    assert context.context["extra"] == "value"


async def test_decorator_reraises_original_error():
    @with_error_handling(reraise=True)
    async def fails():
        raise ConflictError("archived")

    with pytest.raises(ConflictError):
        await fails()


async def test_decorator_can_swallow_for_background_jobs():
    @with_error_handling(error_level=ErrorLevel.WARNING, reraise=False)
    async def fails():
        raise RuntimeError("boom")

    assert await fails() is None


def test_decorator_wraps_sync_functions():
    @with_error_handling(reraise=True)
    def fails(value: int) -> int:
        raise ValueError(value)

    with pytest.raises(ValueError):
        fails(3)
