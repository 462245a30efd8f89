"""Sliding-window rate limiting per client and request purpose."""

from __future__ import annotations

import time
from typing import Callable

import structlog
from starlette.requests import Request
from starlette.responses import Response

from folioguard.config.security_policy import RateLimitProfile, rate_limit_profile
from folioguard.errors import ErrorCode, StoreUnavailableError, error_response, service_unavailable
from folioguard.events import SecurityEventSink, SecurityEventType, emit
from folioguard.middleware.pipeline import Middleware, RequestContext
from folioguard.store.rate_limit import RateLimitDecision, RateLimitStore

logger = structlog.get_logger()

KeyFunc = Callable[[Request, RequestContext], str]


def client_key(request: Request, context: RequestContext) -> str:
    return context.client_ip or "unknown"


class RateLimit(Middleware):
    """Count requests per ``<purpose>:<client>`` and reject over the profile's limit.

    - 429 ``RATE_LIMIT_EXCEEDED`` with ``retryAfter`` and ``Retry-After``
    - ``X-RateLimit-*`` headers on every response this layer saw
    - Fail-closed (503) when the store cannot answer
    """

    def __init__(
        self,
        store: RateLimitStore,
        profile: RateLimitProfile | str,
        key_func: KeyFunc = client_key,
        sink: SecurityEventSink | None = None,
    ) -> None:
        self.store = store
        self.profile = rate_limit_profile(profile) if isinstance(profile, str) else profile
        self.key_func = key_func
        self.sink = sink

    @property
    def name(self) -> str:
        return f"RateLimit[{self.profile.purpose}]"

    @property
    def _context_key(self) -> str:
        return f"rate_limit:{self.profile.purpose}"

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        profile = self.profile
        identifier = self.key_func(request, context)
        key = f"{profile.purpose}:{identifier}"

        try:
            decision = await self.store.check_and_record(key, profile.max_requests, profile.window_seconds)
        except StoreUnavailableError as exc:
            logger.error("rate_limit_store_unavailable", purpose=profile.purpose, error=str(exc), action="fail_closed")
            return service_unavailable()

        context.extra[self._context_key] = decision
        if decision.allowed:
            return None

        logger.warning(
            "rate_limit_exceeded",
            purpose=profile.purpose,
            identifier=identifier,
            max=profile.max_requests,
            retry_after=decision.reset_seconds,
        )
        emit(
            self.sink,
            SecurityEventType.RATE_LIMIT_VIOLATION,
            ip=context.client_ip,
            identifier=identifier,
            purpose=profile.purpose,
            limit=profile.max_requests,
            path=request.url.path,
            user_agent=request.headers.get("user-agent"),
        )
        return error_response(
            429,
            ErrorCode.RATE_LIMIT_EXCEEDED,
            profile.message,
            headers={"Retry-After": str(decision.reset_seconds)},
            retryAfter=decision.reset_seconds,
        )

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        decision: RateLimitDecision | None = context.extra.get(self._context_key)
        if decision is not None:
            response.headers["X-RateLimit-Limit"] = str(decision.limit)
            response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
            response.headers["X-RateLimit-Reset"] = str(int(time.time()) + decision.reset_seconds)
        return response
