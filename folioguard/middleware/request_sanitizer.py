"""Sanitize request body, query and selected headers before the handler sees them.

Sanitized values are placed in ``context.extra`` under ``body``, ``form``,
``query`` and ``headers``. Handlers read from there, never from the raw
request.
"""

from __future__ import annotations

import structlog
from starlette.datastructures import UploadFile
from starlette.requests import Request
from starlette.responses import Response

from folioguard.config.loader import get_settings
from folioguard.errors import ErrorCode, error_response
from folioguard.events import SecurityEventSink, SecurityEventType, emit
from folioguard.middleware.pipeline import Middleware, RequestContext
from folioguard.sanitizer.objects import DEFAULT_FIELD_POLICY, FieldPolicy, sanitize_object
from folioguard.sanitizer.text import TextOptions, sanitize_text

logger = structlog.get_logger()

SANITIZED_HEADERS = ("user-agent", "referer", "origin")
_HEADER_OPTIONS = TextOptions(max_length=500)


def _prefixed(source: str, fields: dict[str, list[str]]) -> dict[str, list[str]]:
    return {f"{source}.{path}" if path else source: families for path, families in fields.items()}


class InputSanitization(Middleware):
    """Run the field-aware sanitizers over everything the client sent.

    Violations are always reported to the event sink. In strict mode they
    also reject the request with ``INPUT_VALIDATION_ERROR``.
    """

    def __init__(
        self,
        policy: FieldPolicy | None = None,
        strict: bool | None = None,
        sanitize_query: bool = True,
        sanitize_headers: bool = False,
        sink: SecurityEventSink | None = None,
    ) -> None:
        self.policy = policy or DEFAULT_FIELD_POLICY
        self.strict = get_settings().sanitize_strict_mode if strict is None else strict
        self.sanitize_query = sanitize_query
        self.sanitize_headers = sanitize_headers
        self.sink = sink

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        violations: list[str] = []
        suspicious: dict[str, list[str]] = {}
        content_type = request.headers.get("content-type", "").lower()

        if content_type.startswith("application/json"):
            raw = await request.body()
            if raw.strip():
                try:
                    payload = await request.json()
                except (ValueError, RecursionError):
                    logger.info("invalid_json_body", path=request.url.path)
                    return error_response(400, ErrorCode.INPUT_VALIDATION_ERROR, "Request body is not valid JSON")
                result = sanitize_object(payload, self.policy)
                if result.depth_exceeded:
                    logger.info("json_body_too_deep", path=request.url.path)
                    return error_response(
                        400,
                        ErrorCode.INPUT_VALIDATION_ERROR,
                        "Request body is nested too deeply",
                        details=result.violations,
                    )
                context.extra["body"] = result.sanitized
                violations.extend(result.violations)
                suspicious.update(_prefixed("body", result.suspicious))
        elif content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            form = await request.form()
            fields = {k: v for k, v in form.multi_items() if not isinstance(v, UploadFile)}
            result = sanitize_object(fields, self.policy)
            context.extra["form"] = result.sanitized
            violations.extend(result.violations)
            suspicious.update(_prefixed("form", result.suspicious))

        if self.sanitize_query:
            result = sanitize_object(dict(request.query_params), self.policy)
            context.extra["query"] = result.sanitized
            violations.extend(result.violations)
            suspicious.update(_prefixed("query", result.suspicious))

        if self.sanitize_headers:
            cleaned: dict[str, str] = {}
            for header in SANITIZED_HEADERS:
                original = request.headers.get(header)
                if original is None:
                    continue
                cleaned[header] = sanitize_text(original, _HEADER_OPTIONS)
                if cleaned[header] != original:
                    violations.append(f"Sanitized header: {header}")
            context.extra["headers"] = cleaned

        if not violations:
            return None

        context.extra["sanitization_violations"] = violations
        emit(
            self.sink,
            SecurityEventType.VALIDATION_FAILURE,
            ip=context.client_ip,
            path=request.url.path,
            violations=violations,
            user_agent=request.headers.get("user-agent"),
        )
        if suspicious:
            logger.warning("suspicious_input", path=request.url.path, fields=sorted(suspicious))
            emit(
                self.sink,
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                ip=context.client_ip,
                path=request.url.path,
                fields=suspicious,
                user_agent=request.headers.get("user-agent"),
            )
        if self.strict:
            return error_response(
                400,
                ErrorCode.INPUT_VALIDATION_ERROR,
                "Request contains potentially malicious content",
                details=violations,
            )
        return None
