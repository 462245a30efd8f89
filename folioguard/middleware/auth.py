"""Resolve the caller's identity into ``context.user_id``.

Session and token issuance live elsewhere; this layer only asks an injected
accessor who the caller is.
"""

from __future__ import annotations

import hmac
import inspect
from typing import Awaitable, Callable, Union

import structlog
from starlette.requests import Request
from starlette.responses import Response

from folioguard.errors import ErrorCode, error_response
from folioguard.middleware.pipeline import Middleware, RequestContext

logger = structlog.get_logger()

IdentityAccessor = Callable[[Request], Union[str, None, Awaitable[Union[str, None]]]]


def bearer_key_accessor(api_key: str, identity: str = "admin") -> IdentityAccessor:
    """Accessor that maps ``Authorization: Bearer <api_key>`` to ``identity``.

    An empty ``api_key`` never authenticates anybody.
    """

    def accessor(request: Request) -> str | None:
        if not api_key:
            return None
        header = request.headers.get("authorization", "")
        token = header[7:] if header.lower().startswith("bearer ") else ""
        if token and hmac.compare_digest(token.encode(), api_key.encode()):
            return identity
        return None

    return accessor


class Authentication(Middleware):
    def __init__(self, accessor: IdentityAccessor, required: bool = True) -> None:
        self.accessor = accessor
        self.required = required

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        identity = self.accessor(request)
        if inspect.isawaitable(identity):
            identity = await identity
        if identity:
            context.user_id = str(identity)
            return None
        if not self.required:
            return None
        logger.info("authentication_required", path=request.url.path)
        return error_response(401, ErrorCode.UNAUTHORIZED, "Authentication required")
