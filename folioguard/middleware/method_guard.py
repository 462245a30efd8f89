"""Reject HTTP methods a route does not serve."""

from __future__ import annotations

from typing import Iterable

from starlette.requests import Request
from starlette.responses import Response

from folioguard.errors import ErrorCode, error_response
from folioguard.middleware.pipeline import Middleware, RequestContext


class MethodGuard(Middleware):
    def __init__(self, methods: Iterable[str]) -> None:
        self.methods = tuple(m.upper() for m in methods)

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        if request.method.upper() in self.methods:
            return None
        allowed = ", ".join(self.methods)
        return error_response(
            405,
            ErrorCode.METHOD_NOT_ALLOWED,
            f"Method {request.method} not allowed. Allowed methods: {allowed}",
            headers={"Allow": allowed},
        )
