"""
Utils Package

Provides utility modules for:
- validation_errors: 422 responses for bad request parameters
"""

from .validation_errors import (
    ValidationErrorResponse,
    raise_missing_parameter,
    raise_invalid_parameter,
    validate_required_id,
    validate_date_range,
    validate_threshold,
)

__all__ = [
    'ValidationErrorResponse',
    'raise_missing_parameter',
    'raise_invalid_parameter',
    'validate_required_id',
    'validate_date_range',
    'validate_threshold',
]
