"""
Structured Error Utilities

Provides standardized error responses for the reconciliation API so the UI
can tell validation failures from reconciliation conflicts.

Error Response Format:
{
    "error": "missing_parameter" | "invalid_parameter" | "not_found" | "invalid_state" | ...,
    "parameter": "session_id",
    "message": "session_id must be a valid UUID format"
}
"""

import uuid
from typing import Any, Dict, NoReturn, Optional

from fastapi import HTTPException, status

from reconciliation.errors import ReconciliationError

# HTTP status per reconciliation error code
ERROR_STATUS_CODES: Dict[str, int] = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_state": status.HTTP_409_CONFLICT,
    "mismatched_pair": status.HTTP_409_CONFLICT,
    "unbalanced": status.HTTP_409_CONFLICT,
}


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


def raise_missing_parameter(parameter: str, message: Optional[str] = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.missing_parameter(parameter, message)
    )


def raise_invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.invalid_parameter(parameter, message, value)
    )


def raise_reconciliation_error(error: ReconciliationError) -> NoReturn:
    """
    Translate a reconciliation core error into an HTTPException.

    not_found -> 404; invalid_state, mismatched_pair, unbalanced -> 409.
    """
    raise HTTPException(
        status_code=ERROR_STATUS_CODES.get(error.error, status.HTTP_400_BAD_REQUEST),
        detail=error.to_dict()
    ) from error


def validate_required_uuid(value: Optional[str], parameter: str) -> str:
    """
    Validate that a required UUID parameter is present and valid.

    Raises:
        HTTPException with structured error if validation fails
    """
    if not value:
        raise_missing_parameter(parameter)

    try:
        uuid.UUID(value)
    except ValueError:
        raise_invalid_parameter(
            parameter,
            f"{parameter} must be a valid UUID format",
            value
        )
    return value
