"""
Error Handling for the Coverage API
===================================

Standardized error codes and response formatting for consistent API responses.

Error Codes
-----------
    INVALID_PARAMETER (400): Bad input parameter
    INVALID_LOCATION (400): Coordinates unparseable or outside the service area
    MISSING_PARAMETER (400): Required parameter missing
    NOT_FOUND (404): Resource not found
    INTERNAL_ERROR (500): Unexpected internal error
    DATABASE_ERROR (500): Storage operation failed

Usage
-----
    from coverage_map.analytics.errors import (
        ErrorCode, CoverageError, api_error, api_success
    )

    if not validate_prefix(prefix):
        raise CoverageError(
            ErrorCode.INVALID_PARAMETER,
            f"Invalid prefix: {prefix}"
        )

    return api_success(data)
    return api_error(ErrorCode.NOT_FOUND, "Prefix not found")
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Standard error codes for API responses."""

    # Client errors (4xx)
    INVALID_PARAMETER = ("INVALID_PARAMETER", 400, "Invalid or malformed parameter")
    INVALID_LOCATION = ("INVALID_LOCATION", 400, "Invalid or out-of-range location")
    MISSING_PARAMETER = ("MISSING_PARAMETER", 400, "Required parameter missing")
    NOT_FOUND = ("NOT_FOUND", 404, "Requested resource not found")

    # Server errors (5xx)
    INTERNAL_ERROR = ("INTERNAL_ERROR", 500, "An internal error occurred")
    DATABASE_ERROR = ("DATABASE_ERROR", 500, "Database operation failed")

    def __init__(self, code: str, http_status: int, default_message: str):
        self.code = code
        self.http_status = http_status
        self.default_message = default_message


@dataclass
class CoverageError(Exception):
    """Exception with error code for API responses."""

    error_code: ErrorCode
    message: str
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        return f"[{self.error_code.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response dict."""
        return api_error(self.error_code, self.message, self.details)


class InvalidLocationError(ValueError):
    """Coordinates could not be parsed or fall outside the configured area."""
    pass


class GeohashError(ValueError):
    """Geohash string is empty or contains characters outside base32."""
    pass


def api_success(data: Any, **kwargs) -> Dict[str, Any]:
    """
    Build a successful API response.

    Example:
        >>> api_success({"prefix": "A1"}, count=1)
        {'success': True, 'data': {'prefix': 'A1'}, 'count': 1}
    """
    result = {"success": True, "data": data}
    result.update(kwargs)
    return result


def api_error(
    error_code: ErrorCode,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build an error API response.

    Args:
        error_code: The ErrorCode enum value
        message: Custom error message (uses default if not provided)
        details: Additional error details

    Returns:
        Dict with success=False and error info
    """
    result = {
        "success": False,
        "error": {
            "code": error_code.code,
            "message": message or error_code.default_message,
            "httpStatus": error_code.http_status,
        }
    }

    if details:
        result["error"]["details"] = details

    return result


def api_error_from_exception(
    exc: Exception,
    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
) -> Dict[str, Any]:
    """
    Build error response from an exception.

    CoverageError keeps its own code, InvalidLocationError maps to
    INVALID_LOCATION, anything else uses default_code.
    """
    if isinstance(exc, CoverageError):
        return exc.to_dict()
    if isinstance(exc, InvalidLocationError):
        return api_error(ErrorCode.INVALID_LOCATION, str(exc))

    return api_error(default_code, str(exc))


def missing_param(param_name: str) -> Dict[str, Any]:
    """Shorthand for missing parameter errors."""
    return api_error(
        ErrorCode.MISSING_PARAMETER,
        f"Required parameter '{param_name}' is missing",
        details={"parameter": param_name}
    )


def not_found(resource: str, identifier: str) -> Dict[str, Any]:
    """Shorthand for not found errors."""
    return api_error(
        ErrorCode.NOT_FOUND,
        f"{resource} '{identifier}' not found",
        details={"resource": resource, "identifier": identifier}
    )
