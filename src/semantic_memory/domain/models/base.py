"""Shared model types and boundary validation helpers."""

from datetime import UTC, datetime
from typing import Any, TypeVar, Union  # noqa: F401  (referenced by the MetadataValue string)

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from typing_extensions import TypeAliasType

from semantic_memory.core.base import ValidationErrorDetails
from semantic_memory.core.errors import ValidationError

# Metadata values form a closed set: string, number, boolean, or nested map of those
MetadataValue = TypeAliasType(
    "MetadataValue",
    "Union[str, bool, int, float, dict[str, MetadataValue]]",
)
Metadata = dict[str, MetadataValue]

_metadata_adapter: TypeAdapter[Metadata] = TypeAdapter(Metadata)

M = TypeVar("M", bound=BaseModel)


def utc_now() -> datetime:
    """Get the current UTC datetime with timezone awareness."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def validate_metadata(value: Any, field: str = "metadata") -> Metadata:
    """Validate an open key-value map at the engine boundary.

    Raises:
        ValidationError: If a key is not a string or a value falls outside
            string, number, boolean and nested map.
    """
    if value is None:
        return {}
    try:
        return _metadata_adapter.validate_python(value, strict=False)
    except PydanticValidationError as e:
        raise ValidationError(
            message=f"Invalid {field}: {e.errors()[0]['msg']}",
            details=ValidationErrorDetails(
                source="domain.models",
                operation="validate_metadata",
                field=field,
                actual_value=str(value)[:200],
                expected_type="map of string to string | number | boolean | map",
            ),
        ) from e


def normalize_tags(tags: Any) -> list[str]:
    """Tags form a set; they are stored stripped, deduplicated and sorted."""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = [tags]
    cleaned = {str(tag).strip() for tag in tags}
    return sorted(tag for tag in cleaned if tag)


def parse_model(model_cls: type[M], data: Any, operation: str) -> M:
    """Validate caller input into a model, raising the engine's ValidationError."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        raise ValidationError(
            message=f"Invalid {model_cls.__name__}: {first['msg']}",
            details=ValidationErrorDetails(
                source="domain.models",
                operation=operation,
                field=".".join(str(part) for part in first["loc"]) or None,
                actual_value=str(data)[:200],
            ),
        ) from e


__all__ = [
    "Metadata",
    "MetadataValue",
    "ensure_utc",
    "normalize_tags",
    "parse_model",
    "utc_now",
    "validate_metadata",
]
