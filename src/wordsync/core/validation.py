"""Input validation for wordsync.

Every payload that crosses the network edge is decoded here. Validators
raise ValidationError with the offending field and a descriptive message;
nothing past this module trusts raw JSON.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .timestamps import normalize_timestamp

__all__ = [
    "ValidationError",
    "MAX_ID_LENGTH",
    "MAX_TEXT_LENGTH",
    "validate_entry_id",
    "validate_timestamp",
    "validate_optional_timestamp",
    "validate_optional_string",
    "validate_choice",
    "validate_list",
    "validate_id_list",
    "validate_object",
]

MAX_ID_LENGTH = 200
MAX_TEXT_LENGTH = 10_000


class ValidationError(ValueError):
    """Validation error with field and message attributes."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"

    def __repr__(self) -> str:
        return f"ValidationError(field='{self.field}', message='{self.message}')"


def validate_entry_id(value: Any, field_name: str = "id") -> str:
    """Validate an entry identifier (non-empty string)."""
    if not isinstance(value, str):
        raise ValidationError(field_name, f"must be a string, got {type(value).__name__}")
    if not value.strip():
        raise ValidationError(field_name, "must not be empty")
    if len(value) > MAX_ID_LENGTH:
        raise ValidationError(field_name, f"must be at most {MAX_ID_LENGTH} characters")
    return value


def validate_timestamp(value: Any, field_name: str) -> str:
    """Validate an ISO-8601 timestamp and return its canonical form."""
    if not isinstance(value, str):
        raise ValidationError(field_name, f"must be an ISO-8601 string, got {type(value).__name__}")
    try:
        return normalize_timestamp(value)
    except ValueError as e:
        raise ValidationError(field_name, f"invalid timestamp: {e}") from None


def validate_optional_timestamp(value: Any, field_name: str) -> Optional[str]:
    """Validate a timestamp that may be null."""
    if value is None:
        return None
    return validate_timestamp(value, field_name)


def validate_optional_string(value: Any, field_name: str) -> Optional[str]:
    """Validate a string field that may be null."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(field_name, f"must be a string, got {type(value).__name__}")
    if len(value) > MAX_TEXT_LENGTH and not value.startswith("data:"):
        raise ValidationError(field_name, f"must be at most {MAX_TEXT_LENGTH} characters")
    return value


def validate_choice(value: Any, field_name: str, choices: List[Any]) -> Any:
    """Validate that a value is one of a fixed set of choices."""
    if value not in choices:
        allowed = ", ".join("null" if c is None else str(c) for c in choices)
        raise ValidationError(field_name, f"must be one of: {allowed}")
    return value


def validate_object(value: Any, field_name: str) -> Dict[str, Any]:
    """Validate that a value is a JSON object."""
    if not isinstance(value, dict):
        raise ValidationError(field_name, f"must be an object, got {type(value).__name__}")
    return value


def validate_list(value: Any, field_name: str) -> List[Any]:
    """Validate that a value is a JSON array."""
    if not isinstance(value, list):
        raise ValidationError(field_name, f"must be an array, got {type(value).__name__}")
    return value


def validate_id_list(value: Any, field_name: str) -> List[str]:
    """Validate an array of entry identifiers."""
    items = validate_list(value, field_name)
    result = []
    for i, item in enumerate(items):
        try:
            result.append(validate_entry_id(item, field_name))
        except ValidationError as e:
            raise ValidationError(field_name, f"item {i}: {e.message}") from None
    return result
