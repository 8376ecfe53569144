"""Centralized error handling for the price API endpoints."""

from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.services.errors import (
    PersistenceError,
    StorageUnavailableError,
    UpstreamUnavailableError,
)


class PriceApiError:
    """Standard error codes for the price API."""

    NO_DATA = "NO_DATA"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse:
    """Standardized error response format."""

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | list[str] | None = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
    ):
        """
        Initialize error response.

        Args:
            error_code: Standard error code from PriceApiError
            message: Human-readable error message
            details: Additional error details (field-specific errors, etc.)
            status_code: HTTP status code
        """
        self.error_code = error_code
        self.message = message
        self.details = details
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        response = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            response["details"] = self.details
        return response

    def to_http_exception(self) -> HTTPException:
        """Convert to FastAPI HTTPException."""
        return HTTPException(
            status_code=self.status_code,
            detail=self.to_dict(),
        )


def create_validation_error_response(errors: list[dict[str, Any]]) -> ErrorResponse:
    """
    Create standardized validation error response from Pydantic validation errors.

    Args:
        errors: List of validation errors from Pydantic

    Returns:
        ErrorResponse with field-specific validation errors
    """
    field_errors = {}
    for error in errors:
        field_path = ".".join(str(loc) for loc in error["loc"])
        field_errors[field_path] = error["msg"]

    return ErrorResponse(
        error_code=PriceApiError.VALIDATION_ERROR,
        message="Validation failed for one or more fields",
        details=field_errors,
        status_code=status.HTTP_400_BAD_REQUEST,
    )


def create_no_data_error(item_id: str) -> ErrorResponse:
    """No price is known for the item yet; clients render "no data yet"."""
    return ErrorResponse(
        error_code=PriceApiError.NO_DATA,
        message=f"No price data for item {item_id}",
        details={"item_id": item_id},
        status_code=status.HTTP_404_NOT_FOUND,
    )


def create_internal_error(message: str = "An unexpected error occurred") -> ErrorResponse:
    return ErrorResponse(
        error_code=PriceApiError.INTERNAL_ERROR,
        message=message,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle FastAPI validation errors with standardized format.

    Args:
        request: FastAPI request object
        exc: RequestValidationError exception

    Returns:
        JSONResponse with standardized error format
    """
    error_response = create_validation_error_response(exc.errors())
    return JSONResponse(
        status_code=error_response.status_code,
        content=error_response.to_dict(),
    )


def handle_service_error(error: Exception) -> ErrorResponse:
    """
    Convert a service layer error into an error response.

    Args:
        error: Exception from service layer

    Returns:
        ErrorResponse with appropriate error code and status
    """
    if isinstance(error, StorageUnavailableError):
        return ErrorResponse(
            error_code=PriceApiError.STORAGE_UNAVAILABLE,
            message="Price storage is unavailable",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if isinstance(error, UpstreamUnavailableError):
        return ErrorResponse(
            error_code=PriceApiError.UPSTREAM_UNAVAILABLE,
            message=str(error),
            details={"upstream": error.upstream},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if isinstance(error, PersistenceError):
        return ErrorResponse(
            error_code=PriceApiError.PERSISTENCE_ERROR,
            message="Failed to persist price data",
            details={"item_id": error.item_id},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    if isinstance(error, ValueError):
        return ErrorResponse(
            error_code=PriceApiError.VALIDATION_ERROR,
            message=str(error),
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    return create_internal_error()
