"""
Custom exceptions and error handlers for consistent error responses.

Every guard in the reservation lifecycle raises one of the typed errors
below before any state is touched. The global handlers turn them into the
standard error envelope.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("rental.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InvalidIntervalError(AppException):
    """Raised when a reservation window ends at or before its start."""

    def __init__(self, start: Any, end: Any):
        super().__init__(
            message="Reservation end must be after its start",
            error_code="ERR_RES_INTERVAL",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"start": str(start), "end": str(end)}
        )


class VehicleUnavailableError(AppException):
    """Raised when a vehicle cannot be booked or handed over for a window."""

    def __init__(self, vehicle_id: Any, reason: str = "Vehicle is not available for the requested period",
                 conflicting_reservation_ids: list = None):
        super().__init__(
            message=reason,
            error_code="ERR_RES_UNAVAILABLE",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "vehicle_id": vehicle_id,
                "conflicting_reservation_ids": conflicting_reservation_ids or []
            }
        )


class MissingRelatedEntityError(AppException):
    """Raised when a reservation's customer or vehicle cannot be resolved."""

    def __init__(self, entity: str, reservation_id: Any = None, entity_id: Any = None):
        super().__init__(
            message=f"Reservation {reservation_id} references a missing {entity}",
            error_code="ERR_RES_MISSING_ENTITY",
            status_code=status.HTTP_409_CONFLICT,
            details={"entity": entity, "entity_id": entity_id, "reservation_id": reservation_id}
        )


class InvalidMileageError(AppException):
    """Raised for odometer readings that would run backwards."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_RES_MILEAGE",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class MissingSignatureError(AppException):
    """Raised when a handover is attempted without a captured signature."""

    def __init__(self, step: str):
        super().__init__(
            message=f"A customer signature is required for {step}",
            error_code="ERR_RES_SIGNATURE",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"step": step}
        )


class IncompleteChecklistError(AppException):
    """Raised when the return checklist is missing required answers."""

    def __init__(self, missing_fields: list):
        super().__init__(
            message="Return checklist is incomplete",
            error_code="ERR_RES_CHECKLIST",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"missing_fields": missing_fields}
        )


class InvalidTokenStateError(AppException):
    """Raised when a portal token is missing, unknown or already consumed."""

    def __init__(self, message: str = "Portal link is no longer valid"):
        super().__init__(
            message=message,
            error_code="ERR_RES_TOKEN",
            status_code=status.HTTP_410_GONE
        )


class PlaceholderNotFoundError(AppException):
    """Raised when signature substitution finds no placeholder to replace."""

    def __init__(self, placeholder: str):
        super().__init__(
            message="Signature placeholder not found in document text",
            error_code="ERR_DOC_PLACEHOLDER",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"placeholder": placeholder}
        )


class InvalidStateTransitionError(AppException):
    """Raised when a transition is not allowed from the reservation's current status."""

    def __init__(self, current: str, transition: str):
        super().__init__(
            message=f"Cannot {transition} a reservation in status '{current}'",
            error_code="ERR_RES_TRANSITION",
            status_code=status.HTTP_409_CONFLICT,
            details={"current_status": current, "transition": transition}
        )


class IncompleteCustomerProfileError(AppException):
    """Raised when self-service details are submitted without required fields."""

    def __init__(self, missing_fields: list):
        super().__init__(
            message="Customer profile is incomplete",
            error_code="ERR_RES_PROFILE",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"missing_fields": missing_fields}
        )


class StorageUnavailableError(AppException):
    """Raised when the file storage collaborator cannot be reached."""

    def __init__(self, message: str = "File storage is temporarily unavailable"):
        super().__init__(
            message=message,
            error_code="ERR_STORAGE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry the raw exception object
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
