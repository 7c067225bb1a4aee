"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
Domain errors raised by the booking, inventory, ledger, QR and settlement
layers all derive from AppException so the API renders them uniformly.
"""

import logging
from decimal import Decimal
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("ridepool.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


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


class ValidationFailedError(AppException):
    """Raised when a domain-level input check fails."""

    def __init__(self, message: str, field: str = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"field": field} if field else {}
        )


class InvalidStateError(AppException):
    """Raised when an entity is not in a state that allows the operation."""

    def __init__(self, message: str, current: str = None, expected: Any = None):
        details = {}
        if current is not None:
            details["current"] = current
        if expected is not None:
            details["expected"] = expected
        super().__init__(
            message=message,
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class SeatsUnavailableError(AppException):
    """Raised when a trip does not have enough unsold seats."""

    def __init__(self, trip_id: int, seats_requested: int, seats_available: int):
        super().__init__(
            message=f"Only {seats_available} seat(s) available on trip {trip_id}, {seats_requested} requested",
            error_code="ERR_SEATS_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "trip_id": trip_id,
                "seats_requested": seats_requested,
                "seats_available": seats_available
            }
        )


class InsufficientFundsError(AppException):
    """Raised when a wallet balance cannot cover a debit."""

    def __init__(self, user_id: int, balance: Decimal, amount_needed: Decimal):
        super().__init__(
            message=f"Insufficient wallet balance: {balance} available, {amount_needed} required",
            error_code="ERR_FUNDS_001",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={
                "user_id": user_id,
                "balance": str(balance),
                "amount_needed": str(amount_needed),
                "shortfall": str(amount_needed - balance)
            }
        )


class TokenInvalidError(AppException):
    """Raised when a scanned QR token cannot be resolved to a booking."""

    def __init__(self, message: str = "QR code is not a valid booking code"):
        super().__init__(
            message=message,
            error_code="ERR_QR_001",
            status_code=status.HTTP_400_BAD_REQUEST
        )


class BookingNotPayableError(AppException):
    """Raised when a scanned booking is not in a payable state."""

    def __init__(self, booking_id: int, booking_status: str, payment_status: str):
        super().__init__(
            message=f"Booking {booking_id} cannot be paid (status: {booking_status})",
            error_code="ERR_QR_002",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "booking_id": booking_id,
                "status": booking_status,
                "payment_status": payment_status
            }
        )


class ConflictError(AppException):
    """Raised when optimistic concurrency retries are exhausted."""

    def __init__(self, resource: str, resource_id: Any, attempts: int):
        super().__init__(
            message=f"Concurrent update on {resource} {resource_id}, gave up after {attempts} attempts",
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource": resource, "id": resource_id, "attempts": attempts}
        )


class GatewayFailureError(AppException):
    """Raised when the external payout/top-up rail fails."""

    def __init__(self, message: str, reference: str = None):
        super().__init__(
            message=message,
            error_code="ERR_GATEWAY_001",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"reference": reference} if reference else {}
        )


class AuthenticationFailedError(AppException):
    """Raised when credentials or a bearer token are not accepted."""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
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
        },
        headers={"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
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
        },
        headers=getattr(exc, "headers", None)
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
    """Strip non-serializable context (e.g. raised exceptions) from validation errors."""
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
