"""Error handlers for API routes.

Provides a consistent ErrorResponse body across all endpoints and maps
the service exception hierarchy onto HTTP status codes:

- ThreadNotFoundError, MessageNotFoundError, AgentNotFoundError -> 404
- DuplicateAgentError -> 400
- ModelCallError, AgentResponseError -> 502
- any other exception -> 500
"""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.core.exceptions import (
    AgentNotFoundError,
    AgentResponseError,
    DuplicateAgentError,
    MessageNotFoundError,
    ModelCallError,
    RoundtableError,
    ThreadNotFoundError,
)
from src.core.logging import get_logger


logger = get_logger(__name__)


# =============================================================================
# Error Response Model
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response model.

    Attributes:
        error: Error type/category
        detail: Human-readable error description
        code: Optional machine-readable error code
        path: Optional request path that caused the error
    """

    error: str = Field(
        ...,
        description="Error type or category",
    )
    detail: str = Field(
        ...,
        description="Human-readable error description",
    )
    code: str | None = Field(
        default=None,
        description="Machine-readable error code",
    )
    path: str | None = Field(
        default=None,
        description="Request path that caused the error",
    )


def _error_json(request: Request, status_code: int, error: str, detail: str, code: str | None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            detail=detail,
            code=code,
            path=str(request.url.path),
        ).model_dump(),
    )


# (status, error, code) per exception type, most specific first
_ROUNDTABLE_ERRORS: list[tuple[type[RoundtableError], int, str, str]] = [
    (ThreadNotFoundError, 404, "NotFound", "THREAD_NOT_FOUND"),
    (MessageNotFoundError, 404, "NotFound", "MESSAGE_NOT_FOUND"),
    (AgentNotFoundError, 404, "NotFound", "AGENT_NOT_FOUND"),
    (DuplicateAgentError, 400, "BadRequest", "DUPLICATE_AGENT"),
    (ModelCallError, 502, "BadGateway", "MODEL_CALL_FAILED"),
    (AgentResponseError, 502, "BadGateway", "AGENT_RESPONSE_FAILED"),
]


# =============================================================================
# Exception Handlers
# =============================================================================

async def http_exception_handler(
    request: Request,
    exc: HTTPException,
) -> JSONResponse:
    """Handle HTTPException with ErrorResponse schema."""
    error_type = {
        400: "BadRequest",
        404: "NotFound",
        422: "ValidationError",
        500: "InternalServerError",
        502: "BadGateway",
        503: "ServiceUnavailable",
    }.get(exc.status_code, "Error")

    return _error_json(request, exc.status_code, error_type, str(exc.detail), None)


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors.

    Returns:
        JSONResponse with ErrorResponse format and field details
    """
    field_errors = []
    for error in exc.errors():
        loc = ".".join(str(x) for x in error.get("loc", []))
        msg = error.get("msg", "Invalid value")
        field_errors.append(f"{loc}: {msg}")

    detail = "; ".join(field_errors) if field_errors else "Validation error"
    return _error_json(request, 422, "ValidationError", detail, "VALIDATION_ERROR")


async def roundtable_exception_handler(
    request: Request,
    exc: RoundtableError,
) -> JSONResponse:
    """Handle the service exception hierarchy.

    Unmapped RoundtableError subclasses are treated as internal errors.
    """
    for exc_type, status_code, error, code in _ROUNDTABLE_ERRORS:
        if isinstance(exc, exc_type):
            if status_code >= 500:
                logger.error(
                    "Upstream call failed",
                    path=str(request.url.path),
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
            return _error_json(request, status_code, error, str(exc), code)

    logger.error(
        "Unhandled service error",
        path=str(request.url.path),
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return _error_json(request, 500, "InternalServerError", str(exc), "INTERNAL_ERROR")


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(
        "Unhandled exception",
        path=str(request.url.path),
        error_type=type(exc).__name__,
    )
    return _error_json(request, 500, "InternalServerError", "An unexpected error occurred", "INTERNAL_ERROR")


# =============================================================================
# Registration Function
# =============================================================================

def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(
        HTTPException,
        http_exception_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        RoundtableError,
        roundtable_exception_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        Exception,
        generic_exception_handler,
    )


__all__ = [
    "ErrorResponse",
    "register_error_handlers",
]
