"""Last line of defense: turn any exception below into a structured JSON error."""

from __future__ import annotations

import traceback
from datetime import datetime, timezone

import structlog
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from folioguard.config.loader import get_settings
from folioguard.errors import AppError, ErrorCode, StoreUnavailableError, error_body
from folioguard.middleware.pipeline import Handler, Middleware, RequestContext
from folioguard.sanitizer.text import TextOptions, sanitize_text

logger = structlog.get_logger()

_GENERIC_MESSAGE = "An internal server error occurred"
_MESSAGE_OPTIONS = TextOptions(max_length=500)


class ErrorHandling(Middleware):
    """Catch exceptions from every inner layer and the handler.

    ``AppError`` subclasses keep their status, code and (sanitized) message.
    Anything else becomes a generic 500. Exception text and stack traces are
    only included when ``debug`` is on.
    """

    def __init__(self, debug: bool | None = None) -> None:
        self.debug = get_settings().debug if debug is None else debug

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        return None

    def wrap(self, handler: Handler) -> Handler:
        inner = super().wrap(handler)

        async def guarded(request: Request, context: RequestContext) -> Response:
            try:
                return await inner(request, context)
            except Exception as exc:
                return self.to_response(exc, request, context)

        return guarded

    def to_response(self, exc: Exception, request: Request, context: RequestContext) -> JSONResponse:
        if isinstance(exc, AppError):
            status_code, code = exc.status_code, exc.code
            message = sanitize_text(exc.message, _MESSAGE_OPTIONS) or exc.default_message
            details = exc.details
            logger.warning(
                "request_failed",
                status=status_code,
                code=code.value,
                error=message,
                user_id=context.user_id or None,
            )
        elif isinstance(exc, StoreUnavailableError):
            status_code, code = 503, ErrorCode.SERVICE_UNAVAILABLE
            message, details = "Service temporarily unavailable", None
            logger.error("backing_store_unavailable", error=str(exc), action="fail_closed")
        else:
            status_code, code = 500, ErrorCode.INTERNAL_SERVER_ERROR
            message, details = _GENERIC_MESSAGE, None
            logger.exception(
                "unhandled_error",
                error_type=type(exc).__name__,
                user_id=context.user_id or None,
                query=str(request.url.query) or None,
            )

        extra = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "requestId": context.request_id,
        }
        if self.debug:
            details = details if details is not None else str(exc)
            extra["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

        return JSONResponse(
            status_code=status_code,
            content=error_body(code, message, details, **extra),
        )
