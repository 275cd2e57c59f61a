"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes, the ledger error taxonomy and
global exception handlers.
"""

import logging
from decimal import Decimal
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict

logger = logging.getLogger("ledger")


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

    def __init__(self, resource: str, resource_id: Any = None, error_code: str = "ERR_NOT_FOUND_001"):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


# Ledger error taxonomy

class LedgerError(AppException):
    """Base class for every ledger validation or state error."""


class InvalidAmountError(LedgerError):
    """Amount is non-positive, non-finite or not a decimal."""

    def __init__(self, amount: Any, reason: str = "Amount must be a positive decimal"):
        super().__init__(
            message=reason,
            error_code="ERR_LEDGER_INVALID_AMOUNT",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"amount": str(amount)}
        )


class EmployeeNotFoundError(LedgerError, ResourceNotFoundError):
    def __init__(self, employee_id: Any):
        ResourceNotFoundError.__init__(
            self, "Employee", employee_id, error_code="ERR_LEDGER_EMPLOYEE_NOT_FOUND"
        )


class AdvanceNotFoundError(LedgerError, ResourceNotFoundError):
    def __init__(self, advance_id: Any):
        ResourceNotFoundError.__init__(
            self, "Advance", advance_id, error_code="ERR_LEDGER_ADVANCE_NOT_FOUND"
        )


class LedgerEntryNotFoundError(LedgerError, ResourceNotFoundError):
    def __init__(self, entry_id: Any):
        ResourceNotFoundError.__init__(
            self, "Ledger entry", entry_id, error_code="ERR_LEDGER_ENTRY_NOT_FOUND"
        )


class OpeningBalanceAlreadySetError(LedgerError):
    def __init__(self, employee_id: Any):
        super().__init__(
            message=f"Opening balance already set for employee {employee_id}",
            error_code="ERR_LEDGER_OPENING_BALANCE_SET",
            status_code=status.HTTP_409_CONFLICT,
            details={"employee_id": employee_id}
        )


class OverUtilizationError(LedgerError):
    """An expense or cash return larger than the advance's remaining balance."""

    def __init__(self, advance_id: Any, requested: Decimal, remaining: Decimal):
        super().__init__(
            message=(
                f"Amount {requested} exceeds remaining balance {remaining} "
                f"of advance {advance_id}"
            ),
            error_code="ERR_LEDGER_OVER_UTILIZATION",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "advance_id": advance_id,
                "requested": str(requested),
                "remaining_balance": str(remaining),
                "excess": str(requested - remaining),
            }
        )


class AdvanceClosedError(LedgerError):
    def __init__(self, advance_id: Any, advance_status: str):
        super().__init__(
            message=f"Advance {advance_id} is {advance_status} and cannot be modified",
            error_code="ERR_LEDGER_ADVANCE_CLOSED",
            status_code=status.HTTP_409_CONFLICT,
            details={"advance_id": advance_id, "status": advance_status}
        )


class ConcurrentModificationError(LedgerError):
    """Lost the per-employee serialization race. Caller should retry with fresh state."""

    def __init__(self, employee_id: Any, expected_version: Any = None):
        super().__init__(
            message=f"Ledger for employee {employee_id} was modified concurrently; retry",
            error_code="ERR_LEDGER_CONCURRENT_MODIFICATION",
            status_code=status.HTTP_409_CONFLICT,
            details={"employee_id": employee_id, "expected_version": expected_version}
        )


class InvalidEntryStateError(LedgerError):
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_INVALID_STATE",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": jsonable_encoder(exc.details)
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
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
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception: %s", type(exc).__name__,
        extra={
            "path": request.url.path,
            "method": request.method,
            "correlation_id": getattr(request.state, "correlation_id", None),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
