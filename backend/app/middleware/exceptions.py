"""Application exceptions and the handlers that render them.

Every error leaves the API in the same envelope:

    {"error": {"code": "ERROR_CODE", "message": "...", "details": {...}}}

Services raise the AtomityException subclasses below; routers let them
propagate and the handlers registered in main.py do the formatting.
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AtomityException(Exception):
    """Base exception for Atomity application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Union[dict, list, None] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class BusinessLogicError(AtomityException):
    """Exception for business logic violations."""

    def __init__(self, message: str, error_code: str = "BUSINESS_LOGIC_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
            details=details,
        )


class ResourceNotFoundError(AtomityException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class InvalidEmailError(BusinessLogicError):
    def __init__(self, email: str):
        super().__init__(
            message=f"Invalid email address: {email!r}",
            error_code="INVALID_EMAIL",
        )


class InvalidCompanyNameError(BusinessLogicError):
    def __init__(self, message: str = "Company name must contain at least 2 characters"):
        super().__init__(message=message, error_code="INVALID_COMPANY_NAME")


# ── Reservations ─────────────────────────────────────────────

class ReservationConflictError(AtomityException):
    """Another researcher holds an active reservation for this company."""

    def __init__(
        self,
        message: str = "This company is already taken. Please search for a different company.",
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="COMPANY_ALREADY_RESERVED",
        )


class ReservationNotHeldError(AtomityException):
    """Keep-alive for a reservation the caller doesn't (or no longer) hold."""

    def __init__(self, company_key: str):
        super().__init__(
            message=f"No active reservation held for {company_key}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="RESERVATION_NOT_HELD",
        )


class ReservationRequiredError(AtomityException):
    """Research access denied: no valid reservation and no prior submission."""

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="RESERVATION_REQUIRED",
            details={"reason": reason},
        )


# ── Research wizard ──────────────────────────────────────────

class StepValidationError(AtomityException):
    """Required research fields are missing."""

    def __init__(self, step: str, errors: dict[str, str]):
        self.step = step
        self.errors = errors
        super().__init__(
            message=f"Please complete the required fields ({len(errors)} missing)",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="STEP_VALIDATION_FAILED",
            details={"step": step, "errors": errors},
        )


class InvalidTransitionError(BusinessLogicError):
    def __init__(self, message: str):
        super().__init__(message=message, error_code="INVALID_TRANSITION")


class WizardLockedError(AtomityException):
    """Edit attempted on a submitted wizard that hasn't been reopened."""

    def __init__(self):
        super().__init__(
            message="Research already submitted; reopen it to make changes",
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="SUBMISSION_COMPLETE",
        )


class DraftConflictError(AtomityException):
    def __init__(self):
        super().__init__(
            message="The draft is being changed elsewhere; try again",
            status_code=status.HTTP_409_CONFLICT,
            error_code="DRAFT_CONFLICT",
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
    headers: dict | None = None,
) -> JSONResponse:
    """Wrap an error in the {"error": {code, message, details?}} envelope."""
    content = {"error": {"code": error_code, "message": message}}
    if details:
        content["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _where(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


async def atomity_exception_handler(request: Request, exc: AtomityException) -> JSONResponse:
    logger.warning(
        f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}",
        extra={"error_code": exc.error_code, **_where(request)},
    )
    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Render HTTPException as HTTP_<status>, keeping its headers (e.g. WWW-Authenticate)."""
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}", extra=_where(request))

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(f"Validation error on {request.url.path}", extra={**_where(request), "errors": errors})

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


# Unique constraints in this schema. Each entry lists name fragments that
# show up in the driver message (SQLite names the column, Postgres the index).
_UNIQUE_VIOLATIONS = (
    (
        ("company_registry.company_name_normalized", "ix_company_registry_company_name_normalized"),
        "COMPANY_ALREADY_RESERVED",
        "This company is already taken. Please search for a different company.",
    ),
    (
        ("research_submissions.company_key", "ix_research_submissions_company_key"),
        "SUBMISSION_EXISTS",
        "Research for this company has already been submitted",
    ),
    (
        ("users.email", "ix_users_email"),
        "EMAIL_ALREADY_REGISTERED",
        "An account with this email already exists",
    ),
)


def describe_integrity_error(exc: IntegrityError) -> tuple[int, str, str]:
    """Map an IntegrityError to (status, error code, message)."""
    error_msg = str(getattr(exc, "orig", None) or exc)

    for fragments, error_code, message in _UNIQUE_VIOLATIONS:
        if any(fragment in error_msg for fragment in fragments):
            return status.HTTP_409_CONFLICT, error_code, message

    if "foreign key" in error_msg.lower():
        # reserved_by / created_by / company_key pointing at a deleted row
        return (
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "UNKNOWN_REFERENCE",
            "Referenced user or company does not exist",
        )
    return status.HTTP_409_CONFLICT, "INTEGRITY_ERROR", "Database constraint violation"


async def database_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    status_code, error_code, message = describe_integrity_error(exc)
    logger.error(
        f"Integrity error {error_code} on {request.url.path}: {exc.orig if hasattr(exc, 'orig') else exc}",
        extra=_where(request),
    )
    return create_error_response(status_code=status_code, message=message, error_code=error_code)


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error(f"Database unavailable on {request.url.path}: {exc}", extra=_where(request))
    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception on {request.url.path}: {exc}",
        extra={**_where(request), "traceback": traceback.format_exc()},
        exc_info=True,
    )
    # Internal details stay in the log
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(AtomityException, atomity_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
