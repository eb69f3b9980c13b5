"""
Structured Validation Error Utilities

Provides standardized error responses for validation failures.
Helps callers distinguish between validation errors and downstream issues.

Error Response Format:
{
    "error": "missing_parameter" | "invalid_parameter" | "validation_error",
    "parameter": "tenant_id",
    "message": "tenant_id is required"
}
"""

from datetime import date
from fastapi import HTTPException, status
from typing import Optional, Any, Tuple


class ValidationErrorResponse:
    """Structured validation error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        return {
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        Args:
            parameter: Name of the invalid parameter
            message: Description of the validation error
            value: The invalid value (optional, for debugging)
        """
        response = {
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]  # Truncate for safety
        return response


def raise_missing_parameter(parameter: str, message: Optional[str] = None):
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.missing_parameter(parameter, message)
    )


def raise_invalid_parameter(parameter: str, message: str, value: Optional[Any] = None):
    """
    Raise HTTPException with structured invalid parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.invalid_parameter(parameter, message, value)
    )


def validate_required_id(value: Optional[str], parameter: str) -> str:
    if not value or not value.strip():
        raise_missing_parameter(parameter)
    return value.strip()


def validate_date_range(
    from_date: Optional[date],
    to_date: Optional[date],
    from_parameter: str = "from_date",
    to_parameter: str = "to_date"
) -> Tuple[Optional[date], Optional[date]]:
    """Reject ranges whose start falls after their end."""
    if from_date and to_date and from_date > to_date:
        raise_invalid_parameter(
            from_parameter,
            f"{from_parameter} must not be after {to_parameter}",
            from_date.isoformat()
        )
    return from_date, to_date


def validate_threshold(value: Optional[float], parameter: str = "threshold") -> Optional[float]:
    if value is None:
        return None
    if not 0.0 <= value <= 1.0:
        raise_invalid_parameter(parameter, f"{parameter} must be between 0 and 1", value)
    return value
