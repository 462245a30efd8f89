"""Error codes, exception taxonomy and the structured JSON error body.

Every rejection produced by the pipeline has the same shape::

    {"success": false, "error": {"code": "...", "message": "...", "details": ...}}
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from starlette.responses import JSONResponse


class ErrorCode(str, Enum):
    CSRF_TOKEN_MISSING = "CSRF_TOKEN_MISSING"
    CSRF_TOKEN_INVALID = "CSRF_TOKEN_INVALID"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INPUT_VALIDATION_ERROR = "INPUT_VALIDATION_ERROR"
    FILE_VALIDATION_ERROR = "FILE_VALIDATION_ERROR"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class AppError(Exception):
    """Error raised by a handler that maps onto a client-facing status and code."""

    status_code = 500
    code = ErrorCode.INTERNAL_SERVER_ERROR
    default_message = "An internal server error occurred"

    def __init__(self, message: str | None = None, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid input data"


class UnauthorizedError(AppError):
    status_code = 401
    code = ErrorCode.UNAUTHORIZED
    default_message = "Authentication required"


class ForbiddenError(AppError):
    status_code = 403
    code = ErrorCode.FORBIDDEN
    default_message = "Access denied"


class NotFoundError(AppError):
    status_code = 404
    code = ErrorCode.NOT_FOUND
    default_message = "Resource not found"


class StoreUnavailableError(Exception):
    """The CSRF or rate-limit backing store could not answer. Callers fail closed."""


def error_body(code: ErrorCode | str, message: str, details: Any = None, **extra: Any) -> dict:
    error: dict[str, Any] = {"code": str(getattr(code, "value", code)), "message": message}
    if details is not None:
        error["details"] = details
    error.update(extra)
    return {"success": False, "error": error}


def error_response(
    status_code: int,
    code: ErrorCode | str,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    """Build the terminal JSON response used when a middleware short-circuits."""
    return JSONResponse(
        status_code=status_code,
        content=error_body(code, message, details, **extra),
        headers=headers,
    )


def service_unavailable() -> JSONResponse:
    return error_response(
        503,
        ErrorCode.SERVICE_UNAVAILABLE,
        "Service temporarily unavailable",
    )
