"""
Input Validation for the Coverage API
=====================================

Validation helpers for query parameters and JSON bodies, raising
ValidationError with a clear message.

Usage
-----
    from coverage_map.analytics.validation import (
        ValidationError, validate_prefix_param, validate_path
    )

    try:
        prefix = validate_prefix_param(prefix_param)
        path = validate_path(body.get("path"))
    except ValidationError as e:
        return e.to_response()

Validation Functions
-------------------
    validate_positive_int(value, name, default=None, min_value=0, max_value=None)
    validate_optional_int(value, name)
    validate_optional_float(value, name)
    validate_bool(value, name, default=None)
    validate_string_choice(value, name, choices, default=None)
    validate_optional_string(value, name, max_length=255)
    validate_prefix_param(value, name="prefix")
    validate_path(value, name="path")

Error Response Format
--------------------
Same envelope as errors.api_error():

    {
        "success": False,
        "error": {
            "code": "INVALID_PARAMETER",
            "message": "...",
            "httpStatus": 400,
            "details": { "parameter": "...", "value": "..." }
        }
    }
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import ErrorCode, api_error
from .utils import normalize_prefix


@dataclass
class ValidationError(Exception):
    """Validation error with details for API response."""

    parameter: str
    message: str
    value: Any = None

    def to_response(self) -> Dict[str, Any]:
        return api_error(
            ErrorCode.INVALID_PARAMETER,
            self.message,
            details={
                "parameter": self.parameter,
                "value": str(self.value) if self.value is not None else None,
            }
        )

    def __str__(self) -> str:
        return f"Invalid '{self.parameter}': {self.message}"


def validate_positive_int(
    value: Any,
    name: str,
    default: Optional[int] = None,
    min_value: int = 0,
    max_value: Optional[int] = None,
) -> int:
    """
    Validate and convert value to a bounded integer.

    Args:
        value: Input value (may be string from query param)
        name: Parameter name for error messages
        default: Default value if None or empty
        min_value: Minimum allowed value (default: 0)
        max_value: Maximum allowed value (optional)

    Raises:
        ValidationError: If value is missing without a default, not an
            integer, or out of bounds
    """
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(name, f"'{name}' is required", value)

    try:
        int_val = int(value)
    except (ValueError, TypeError):
        raise ValidationError(name, f"must be an integer, got '{value}'", value)

    if int_val < min_value:
        raise ValidationError(name, f"must be at least {min_value}, got {int_val}", value)

    if max_value is not None and int_val > max_value:
        raise ValidationError(name, f"must be at most {max_value}, got {int_val}", value)

    return int_val


def validate_optional_int(value: Any, name: str) -> Optional[int]:
    """Integer filter bound; None when absent."""
    if value is None or value == "":
        return None
    return validate_positive_int(value, name)


def validate_optional_float(value: Any, name: str) -> Optional[float]:
    """
    Optional finite float (snr, rssi, percent bounds).

    Returns None for missing values; rejects NaN and infinities.
    """
    if value is None or value == "":
        return None

    try:
        float_val = float(value)
    except (ValueError, TypeError):
        raise ValidationError(name, f"must be a number, got '{value}'", value)

    if not math.isfinite(float_val):
        raise ValidationError(name, f"must be a finite number, got '{value}'", value)

    return float_val


def validate_bool(value: Any, name: str, default: Optional[bool] = None) -> Optional[bool]:
    """
    Validate boolean parameter.

    Accepts real booleans and true/false, 1/0, yes/no (case insensitive).
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value

    str_val = str(value).lower().strip()

    if str_val in ("true", "1", "yes"):
        return True
    if str_val in ("false", "0", "no"):
        return False

    raise ValidationError(name, f"must be a boolean (true/false), got '{value}'", value)


def validate_string_choice(
    value: Any,
    name: str,
    choices,
    default: Optional[str] = None,
) -> str:
    """
    Validate string is one of allowed choices (case insensitive).

    Returns the canonical spelling from choices.
    """
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(name, f"'{name}' is required", value)

    lower_val = str(value).lower()
    for choice in choices:
        if choice.lower() == lower_val:
            return choice

    choices_str = ", ".join(f"'{c}'" for c in choices)
    raise ValidationError(name, f"must be one of [{choices_str}], got '{value}'", value)


def validate_optional_string(value: Any, name: str, max_length: int = 255) -> Optional[str]:
    """Free-text label such as a driver name; None when absent or blank."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(name, "must be a string", value)

    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(name, f"must be at most {max_length} characters", value)
    return text or None


def validate_prefix_param(value: Any, name: str = "prefix") -> str:
    """
    Validate a 2-character hex repeater prefix.

    Returns:
        Uppercase prefix
    """
    if value is None or value == "":
        raise ValidationError(name, f"'{name}' is required", value)

    prefix = normalize_prefix(str(value))
    if prefix is None:
        raise ValidationError(
            name,
            f"must be a 2-character hex prefix (e.g. 'A1'), got '{value}'",
            value
        )
    return prefix


def validate_path(value: Any, name: str = "path") -> List[str]:
    """
    Validate a reported path of repeater prefixes.

    Missing paths are empty. Every hop must be a 2-character hex prefix;
    hops come back lowercased, the way samples are stored.
    """
    if value is None or value == "":
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(name, "must be a list of prefixes", value)

    hops = []
    for hop in value:
        if normalize_prefix(str(hop)) is None:
            raise ValidationError(name, f"contains invalid prefix '{hop}'", value)
        hops.append(str(hop).strip().lower())
    return hops
