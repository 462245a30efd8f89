"""Portfolio API endpoints, each behind its own middleware chain.

The handlers are deliberately thin: persistence and email delivery belong to
other services. What matters here is that every handler only ever sees
sanitized input from ``context.extra`` and runs after the chain has
authenticated, rate-limited and CSRF-checked the request.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, replace
from typing import Sequence

import structlog
from fastapi import APIRouter
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from folioguard.config.loader import SecuritySettings
from folioguard.config.security_policy import rate_limit_profile
from folioguard.errors import ValidationError
from folioguard.events import MemoryEventSink, SecurityEventSink
from folioguard.middleware.auth import Authentication, IdentityAccessor
from folioguard.middleware.csrf import CsrfProtection
from folioguard.middleware.error_handling import ErrorHandling
from folioguard.middleware.method_guard import MethodGuard
from folioguard.middleware.pipeline import Handler, Middleware, RequestContext, as_endpoint, compose
from folioguard.middleware.rate_limiter import RateLimit
from folioguard.middleware.request_sanitizer import InputSanitization
from folioguard.middleware.security_headers import SecurityHeaders
from folioguard.middleware.upload_security import UploadSecurity
from folioguard.sanitizer.html import RICH_HTML_OPTIONS
from folioguard.sanitizer.objects import FieldPolicy
from folioguard.store.csrf import CsrfTokenStore
from folioguard.store.rate_limit import RateLimitStore
from folioguard.upload.validator import IMAGE_POLICY, generate_secure_filename

logger = structlog.get_logger()

# Methods routed to every chain so MethodGuard answers with a structured 405
_ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]
_SLUG_RE = re.compile(r"[^a-z0-9]+")
_DEFAULT_EVENT_LIMIT = 50
_MAX_EVENT_LIMIT = 500

CONTACT_POLICY = FieldPolicy()
BLOG_POLICY = FieldPolicy.build(
    html_fields=["content"],
    database_fields=["excerpt"],
    html_options=RICH_HTML_OPTIONS,
)


@dataclass
class SecurityServices:
    """Everything the chains need, injected once at app creation."""

    settings: SecuritySettings
    csrf_store: CsrfTokenStore
    rate_store: RateLimitStore
    sink: SecurityEventSink
    event_buffer: MemoryEventSink
    identity: IdentityAccessor


def _ok(data: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


def _object_payload(context: RequestContext, *sources: str) -> dict:
    for source in sources:
        payload = context.extra.get(source)
        if payload:
            if not isinstance(payload, dict):
                raise ValidationError("Request body must be a JSON object")
            return payload
    return {}


def _require(payload: dict, fields: Sequence[str]) -> None:
    missing = [f for f in fields if not payload.get(f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", details=missing)
    wrong_type = [f for f in fields if not isinstance(payload[f], str)]
    if wrong_type:
        raise ValidationError(f"Fields must be strings: {', '.join(wrong_type)}", details=wrong_type)


def slugify(title: str) -> str:
    return _SLUG_RE.sub("-", title.lower()).strip("-")


class PortfolioHandlers:
    def __init__(self, services: SecurityServices) -> None:
        self.services = services

    async def issue_csrf_token(self, request: Request, context: RequestContext) -> Response:
        store = self.services.csrf_store
        token = await store.issue(context.user_id)
        return _ok({"csrfToken": token, "expiresIn": store.ttl_seconds})

    async def submit_contact(self, request: Request, context: RequestContext) -> Response:
        payload = _object_payload(context, "body", "form")
        _require(payload, ("name", "email", "message"))
        logger.info("contact_message_accepted", email_domain=payload["email"].partition("@")[2])
        return _ok(
            {
                "name": payload["name"],
                "email": payload["email"],
                "subject": payload.get("subject", ""),
                "message": payload["message"],
            },
            status_code=201,
        )

    async def create_blog_post(self, request: Request, context: RequestContext) -> Response:
        payload = _object_payload(context, "body")
        _require(payload, ("title", "content"))
        slug = payload.get("slug")
        if not isinstance(slug, str) or not slug:
            slug = payload["title"]
        tags = payload.get("tags") or []
        if not isinstance(tags, list):
            raise ValidationError("tags must be a list")
        post = {
            "title": payload["title"],
            "slug": slugify(slug),
            "content": payload["content"],
            "excerpt": payload.get("excerpt", ""),
            "tags": tags,
            "featuredImage": payload.get("featuredImage", ""),
            "author": context.user_id,
        }
        logger.info("blog_post_accepted", slug=post["slug"], author=context.user_id)
        return _ok(post, status_code=201)

    async def upload_blog_images(self, request: Request, context: RequestContext) -> Response:
        files = [
            {
                "originalName": upload.filename,
                "filename": generate_secure_filename(upload.filename, prefix="blog"),
                "size": upload.size,
                "contentType": upload.content_type,
            }
            for upload in context.extra.get("uploads", [])
        ]
        return _ok({"files": files, "warnings": context.extra.get("upload_warnings", [])}, status_code=201)

    async def security_events(self, request: Request, context: RequestContext) -> Response:
        query = context.extra.get("query", {})
        try:
            limit = min(int(query.get("limit") or _DEFAULT_EVENT_LIMIT), _MAX_EVENT_LIMIT)
        except ValueError:
            raise ValidationError("limit must be an integer") from None
        buffer = self.services.event_buffer
        events = buffer.recent(limit=limit, event_type=query.get("type") or None)
        summary = Counter(event["type"] for event in buffer.recent())
        return _ok({"events": events, "total": len(events), "summary": dict(summary)})


def _chain(services: SecurityServices, methods: Sequence[str], *layers: Middleware) -> Sequence[Middleware]:
    """Common outer layers, then the route's own."""
    return (
        SecurityHeaders(services.settings.header_preset, services.settings.environment),
        ErrorHandling(debug=services.settings.debug),
        MethodGuard(methods),
        *layers,
    )


def build_router(services: SecurityServices) -> APIRouter:
    settings = services.settings
    sink = services.sink
    handlers = PortfolioHandlers(services)
    image_policy = replace(IMAGE_POLICY, max_size=settings.upload_image_max_bytes)
    blog_policy = replace(BLOG_POLICY, database_max_length=settings.database_field_max_length)

    def rate_limit(purpose: str) -> RateLimit:
        return RateLimit(services.rate_store, rate_limit_profile(purpose, settings), sink=sink)

    def authenticated() -> Authentication:
        return Authentication(services.identity, required=True)

    def csrf() -> CsrfProtection:
        return CsrfProtection(
            services.csrf_store,
            header_name=settings.csrf_header_name,
            body_field=settings.csrf_body_field,
            sink=sink,
        )

    def sanitize(policy: FieldPolicy) -> InputSanitization:
        return InputSanitization(policy, strict=settings.sanitize_strict_mode, sink=sink)

    routes: list[tuple[str, Handler, Sequence[Middleware]]] = [
        (
            "/api/auth/csrf",
            handlers.issue_csrf_token,
            _chain(services, ["GET"], authenticated()),
        ),
        (
            "/api/contact",
            handlers.submit_contact,
            _chain(services, ["POST"], rate_limit("contact"), sanitize(CONTACT_POLICY)),
        ),
        (
            "/api/blog",
            handlers.create_blog_post,
            _chain(services, ["POST"], rate_limit("api"), authenticated(), csrf(), sanitize(blog_policy)),
        ),
        (
            "/api/blog/upload",
            handlers.upload_blog_images,
            _chain(
                services,
                ["POST"],
                rate_limit("upload"),
                authenticated(),
                csrf(),
                UploadSecurity(image_policy, sink=sink),
            ),
        ),
        (
            "/api/admin/security",
            handlers.security_events,
            _chain(services, ["GET"], rate_limit("api"), authenticated(), sanitize(FieldPolicy())),
        ),
    ]

    router = APIRouter()
    for path, handler, layers in routes:
        endpoint = as_endpoint(compose(*layers)(handler), trust_forwarded=settings.trust_forwarded_for)
        router.add_api_route(path, endpoint, methods=_ROUTED_METHODS, response_model=None)
        logger.debug("route_registered", path=path, layers=[mw.name for mw in layers])
    return router
