"""Application exceptions and FastAPI error handlers.

Ledger errors follow one rule: validation and concurrency failures belong to
the caller, integrity and configuration failures halt the operation and are
never downgraded.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class LedgerValidationError(AppException):
    """Malformed append input. The caller's bug, never retried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_VALIDATION",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
        )


class PeriodClosedError(LedgerValidationError):
    """Non-adjustment entry aimed at a closed accounting period."""

    def __init__(self, organization_id: str, accounting_period: str, transaction_type: str):
        super().__init__(
            message=(
                f"Accounting period {accounting_period} is closed. "
                "Only ADJUSTMENT entries may be posted into it."
            ),
            details={
                "organization_id": organization_id,
                "accounting_period": accounting_period,
                "transaction_type": transaction_type,
            },
        )
        self.error_code = "ERR_LEDGER_PERIOD_CLOSED"
        self.status_code = status.HTTP_409_CONFLICT


class ConcurrencyError(AppException):
    """Lost the race to extend an organization's chain. Retry with a fresh tail."""

    def __init__(self, organization_id: str, expected_sequence: int):
        super().__init__(
            message=(
                f"Ledger chain for organization {organization_id} moved past "
                f"sequence {expected_sequence} during append"
            ),
            error_code="ERR_LEDGER_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "organization_id": organization_id,
                "expected_sequence": expected_sequence,
            },
        )
        self.organization_id = organization_id
        self.expected_sequence = expected_sequence


class IntegrityViolation(AppException):
    """A hash or chain-link mismatch, or an attempt to rewrite a sealed entry."""

    def __init__(
        self,
        message: str,
        organization_id: Optional[str] = None,
        entry_id: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_INTEGRITY",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"organization_id": organization_id, "entry_id": entry_id},
        )
        self.organization_id = organization_id
        self.entry_id = entry_id


class ImmutableEntryError(IntegrityViolation):
    """Raised when ORM code tries to update or delete a ledger entry."""

    def __init__(self, entry_id: Optional[str], operation: str, fields: Optional[list] = None):
        super().__init__(
            message=f"Ledger entry {entry_id} is sealed; {operation} is not permitted",
            entry_id=entry_id,
        )
        self.details["operation"] = operation
        if fields:
            self.details["fields"] = sorted(fields)


class ConfigurationError(AppException):
    """Deployment or route-table misconfiguration."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONFIGURATION",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


class NotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id},
        )


class MalformedAccessInput(ValueError):
    """Programming-contract violation in the inputs handed to the access gate."""


# Global exception handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for application exceptions."""
    if isinstance(exc, IntegrityViolation):
        logger.critical(
            "Ledger integrity violation surfaced to client",
            extra={
                "error_code": exc.error_code,
                "path": request.url.path,
                "correlation_id": getattr(request.state, "correlation_id", None),
                **exc.details,
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for request body validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )
