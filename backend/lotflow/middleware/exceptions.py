"""Exception types and handlers for the lot-execution API.

Services raise ``BusinessLogicError`` for rule violations (before any
write) and ``ResourceNotFoundError`` for missing records.  Store errors
from SQLAlchemy propagate unchanged and are mapped to a status code
here.  Every error body has the same shape:

    {"error": {"code": "...", "message": "...", "details": {...}}}
"""

import logging
from typing import Union

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

# Unique constraints that concurrent operators can trip, keyed by the
# constraint name (PostgreSQL) and by the column list SQLite reports.
DUPLICATE_MESSAGES = {
    "uq_lot_runs_batch_process": "A lot run for this batch and process already exists; reload it",
    "lot_runs.supply_batch_id, lot_runs.process_id":
        "A lot run for this batch and process already exists; reload it",
    "uq_metal_check_attempts_output_no": "Another metal check was recorded for this output; reload and retry",
    "metal_check_attempts.packaging_run_id":
        "Another metal check was recorded for this output; reload and retry",
    "uq_step_runs_run_step": "Step run already exists for this lot run",
    "production_batches.lot_run_id": "Lot run already has a production batch",
    "uq_process_steps_process_seq": "Step sequence numbers must be unique within a process",
}


class LotFlowException(Exception):
    """Base exception for lot-execution errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


class BusinessLogicError(LotFlowException):
    """A rule of the production flow was violated; nothing was written."""

    def __init__(self, message: str, error_code: str = "BUSINESS_LOGIC_ERROR"):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
        )


class ResourceNotFoundError(LotFlowException):
    """An addressed record (run, step run, output, entry...) does not exist."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    body = {"code": error_code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


def _where(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


def duplicate_message(error_text: str) -> str:
    """Operator-facing message for a unique violation."""
    for key, message in DUPLICATE_MESSAGES.items():
        if key in error_text:
            return message
    return "A record with this value already exists"


async def lotflow_exception_handler(request: Request, exc: LotFlowException) -> JSONResponse:
    """Rule violations and missing records; the message is surfaced verbatim."""
    logger.warning(
        f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}",
        extra={"error_code": exc.error_code, **_where(request)},
    )
    return create_error_response(exc.status_code, exc.message, exc.error_code)


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {exc.detail}", extra=_where(request))
    return create_error_response(
        exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Malformed request bodies, reported field by field."""
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"Validation error on {request.url.path} ({len(errors)} field(s))",
        extra=_where(request),
    )
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        details={"errors": errors},
    )


async def integrity_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Constraint violations from the store, usually two operators racing."""
    error_text = str(exc.orig) if exc.orig is not None else str(exc)
    logger.error(
        f"Integrity error on {request.url.path}: {error_text}",
        extra=_where(request),
    )

    lowered = error_text.lower()
    if "unique" in lowered or "duplicate" in lowered:
        message, error_code = duplicate_message(error_text), "DUPLICATE_RECORD"
    elif "foreign key" in lowered:
        message, error_code = "Referenced record does not exist", "FOREIGN_KEY_VIOLATION"
    elif "not null" in lowered:
        message, error_code = "Required field is missing", "NULL_VALUE_NOT_ALLOWED"
    else:
        message, error_code = "Database constraint violation", "INTEGRITY_ERROR"

    return create_error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, message, error_code)


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """The store is unreachable or timed out; nothing is retried here."""
    logger.error(
        f"Database operational error on {request.url.path}: {exc}",
        extra=_where(request),
    )
    return create_error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Database temporarily unavailable. Please try again.",
        "DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception on {request.url.path}: {exc}",
        extra=_where(request),
        exc_info=True,
    )
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        "INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LotFlowException, lotflow_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
