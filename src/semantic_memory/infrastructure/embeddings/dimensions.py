"""Embedding dimension bookkeeping per model."""

import threading

from semantic_memory.core.base import ErrorCode, ValidationErrorDetails
from semantic_memory.core.errors import ValidationError


class ModelDimensionRegistry:
    """Tracks the fixed output dimension of each embedding model.

    Declared dimensions come from configuration. A model without one has its
    dimension fixed by the first vector it produces.
    """

    def __init__(self, declared: dict[str, int] | None = None) -> None:
        self._dimensions = dict(declared or {})
        self._lock = threading.Lock()

    def dimension_for(self, model: str) -> int | None:
        with self._lock:
            return self._dimensions.get(model)

    def check(self, model: str, vector: list[float], operation: str = "check_dimension") -> None:
        """Raise ValidationError if ``vector`` does not have the model's dimension."""
        with self._lock:
            expected = self._dimensions.setdefault(model, len(vector))
        if len(vector) != expected:
            raise ValidationError(
                message=f"Embedding for model '{model}' has dimension {len(vector)}, expected {expected}",
                details=ValidationErrorDetails(
                    source="dimension_registry",
                    operation=operation,
                    field="embedding",
                    actual_value=len(vector),
                    constraint=f"dimension == {expected}",
                ),
                code=ErrorCode.DIMENSION_MISMATCH,
            )
