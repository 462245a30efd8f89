"""CSRF verification for state-changing requests.

Tokens are bound to ``context.user_id``, so this layer must sit inside
:class:`~folioguard.middleware.auth.Authentication`. A valid token is consumed:
replaying it returns ``CSRF_TOKEN_INVALID``.
"""

from __future__ import annotations

from typing import Iterable

import structlog
from starlette.requests import Request
from starlette.responses import Response

from folioguard.config.loader import get_settings
from folioguard.errors import ErrorCode, StoreUnavailableError, error_response, service_unavailable
from folioguard.events import SecurityEventSink, SecurityEventType, emit
from folioguard.middleware.pipeline import Middleware, RequestContext
from folioguard.store.csrf import CsrfTokenStore

logger = structlog.get_logger()

SAFE_METHODS = ("GET", "HEAD", "OPTIONS")
_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def token_from_body(request: Request, field: str) -> str | None:
    """Look for the token in a JSON or form body without failing the request."""
    content_type = request.headers.get("content-type", "").lower()
    try:
        if content_type.startswith("application/json"):
            payload = await request.json()
            value = payload.get(field) if isinstance(payload, dict) else None
        elif content_type.startswith(_FORM_TYPES):
            value = (await request.form()).get(field)
        else:
            return None
    except Exception as exc:
        # Malformed bodies are rejected by the sanitization layer; here they just carry no token
        logger.debug("csrf_body_unreadable", error=str(exc))
        return None
    return value if isinstance(value, str) else None


class CsrfProtection(Middleware):
    requires = ("user_id",)

    def __init__(
        self,
        store: CsrfTokenStore,
        header_name: str | None = None,
        body_field: str | None = None,
        skip_methods: Iterable[str] = SAFE_METHODS,
        sink: SecurityEventSink | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.header_name = (header_name or settings.csrf_header_name).lower()
        self.body_field = body_field or settings.csrf_body_field
        self.skip_methods = frozenset(m.upper() for m in skip_methods)
        self.sink = sink

    def _reject(self, request: Request, context: RequestContext, code: ErrorCode, message: str) -> Response:
        logger.warning("csrf_rejected", code=code.value, user_id=context.user_id)
        emit(
            self.sink,
            SecurityEventType.CSRF_VIOLATION,
            ip=context.client_ip,
            user_id=context.user_id,
            reason=code.value,
            path=request.url.path,
            user_agent=request.headers.get("user-agent"),
        )
        return error_response(403, code, message)

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        if request.method.upper() in self.skip_methods:
            return None

        token = request.headers.get(self.header_name) or await token_from_body(request, self.body_field)
        if not token:
            return self._reject(request, context, ErrorCode.CSRF_TOKEN_MISSING, "CSRF token is required")

        try:
            consumed = await self.store.consume(token, context.user_id)
        except StoreUnavailableError as exc:
            logger.error("csrf_store_unavailable", error=str(exc), action="fail_closed")
            return service_unavailable()

        if not consumed:
            return self._reject(request, context, ErrorCode.CSRF_TOKEN_INVALID, "Invalid or expired CSRF token")
        context.extra["csrf_verified"] = True
        return None
