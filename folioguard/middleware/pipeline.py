"""Ordered middleware chain framework.

Each middleware wraps the next handler. ``compose(a, b, c)(h)`` is
``a.wrap(b.wrap(c.wrap(h)))``: ``a`` sees the request first and the
response last.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import uuid4

import structlog
from starlette.requests import Request
from starlette.responses import Response

from folioguard.errors import ErrorCode, error_response
from folioguard.logging_config import bind_request, clear_request

logger = structlog.get_logger()


@dataclass
class RequestContext:
    """Mutable context passed through the middleware chain."""

    request_id: str = ""
    user_id: str = ""
    client_ip: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.request_id:
            self.request_id = uuid4().hex[:8]


Handler = Callable[[Request, RequestContext], Awaitable[Response]]


def client_ip(request: Request, trust_forwarded: bool = False) -> str:
    """First ``X-Forwarded-For`` hop when the proxy is trusted, else the peer address."""
    if trust_forwarded:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _missing_identity() -> Response:
    return error_response(401, ErrorCode.UNAUTHORIZED, "Authentication required")


class Middleware(abc.ABC):
    """Base class for middleware in the chain.

    ``requires`` names context attributes an earlier layer must have filled
    in. A missing ``user_id`` fails closed with 401; any other missing
    attribute means the chain was assembled in the wrong order.
    """

    requires: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abc.abstractmethod
    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        """Process an incoming request.

        Return None to continue the chain, or a Response to short-circuit.
        """
        ...

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        """Process an outgoing response. Override if needed.

        Also runs on responses this middleware short-circuited with.
        """
        return response

    def _check_requirements(self, context: RequestContext) -> Response | None:
        for attribute in self.requires:
            if getattr(context, attribute, None):
                continue
            logger.warning("middleware_requirement_missing", middleware=self.name, attribute=attribute)
            if attribute == "user_id":
                return _missing_identity()
            raise RuntimeError(f"{self.name} requires context.{attribute} to be set by an earlier middleware")
        return None

    def wrap(self, handler: Handler) -> Handler:
        """Return a handler that runs this middleware around ``handler``."""

        async def wrapped(request: Request, context: RequestContext) -> Response:
            response = self._check_requirements(context)
            if response is None:
                response = await self.process_request(request, context)
            if response is None:
                response = await handler(request, context)
            else:
                logger.info("middleware_short_circuit", middleware=self.name, status=response.status_code)
            return await self.process_response(response, context)

        wrapped.__qualname__ = f"{self.name}.wrapped"
        return wrapped


def compose(*middlewares: Middleware) -> Callable[[Handler], Handler]:
    """Fold ``middlewares`` around a handler, first one outermost."""

    def apply(handler: Handler) -> Handler:
        for middleware in reversed(middlewares):
            handler = middleware.wrap(handler)
        return handler

    return apply


class MiddlewarePipeline:
    """Ordered list of middleware that can be toggled by name and built into a handler."""

    def __init__(self) -> None:
        self._middleware: list[Middleware] = []
        self._enabled: dict[str, bool] = {}

    def add(self, middleware: Middleware, enabled: bool = True) -> "MiddlewarePipeline":
        """Add a middleware to the inner end of the pipeline."""
        self._middleware.append(middleware)
        self._enabled[middleware.name] = enabled
        logger.info("middleware_registered", name=middleware.name, enabled=enabled)
        return self

    def set_enabled(self, name: str, enabled: bool) -> None:
        """Enable or disable a middleware by name."""
        if name in self._enabled:
            self._enabled[name] = enabled

    @property
    def active(self) -> list[Middleware]:
        return [mw for mw in self._middleware if self._enabled.get(mw.name, True)]

    def build(self, handler: Handler) -> Handler:
        return compose(*self.active)(handler)


def as_endpoint(handler: Handler, trust_forwarded: bool = False) -> Callable[[Request], Awaitable[Response]]:
    """Adapt a chain-built handler into a Starlette/FastAPI endpoint."""

    async def endpoint(request: Request) -> Response:
        # Client-supplied request ids are never trusted; always mint a fresh one
        context = RequestContext(client_ip=client_ip(request, trust_forwarded))
        bind_request(context.request_id, context.client_ip, request.method, request.url.path)
        try:
            response = await handler(request, context)
        finally:
            clear_request()
        response.headers["x-request-id"] = context.request_id
        return response

    return endpoint
