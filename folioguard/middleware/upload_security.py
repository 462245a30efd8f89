"""Validate multipart uploads before the handler touches them."""

from __future__ import annotations

import structlog
from starlette.datastructures import UploadFile
from starlette.requests import Request
from starlette.responses import Response

from folioguard.errors import ErrorCode, error_response
from folioguard.events import SecurityEventSink, SecurityEventType, emit
from folioguard.middleware.pipeline import Middleware, RequestContext
from folioguard.upload.validator import IMAGE_POLICY, UploadDescriptor, UploadPolicy, validate_uploads

logger = structlog.get_logger()


async def _describe(upload: UploadFile, read_limit: int) -> UploadDescriptor:
    # One byte past the ceiling is enough to prove a file is too large
    content = await upload.read(read_limit + 1)
    await upload.seek(0)
    size = upload.size if getattr(upload, "size", None) is not None else len(content)
    return UploadDescriptor(
        filename=upload.filename or "",
        content_type=(upload.content_type or "application/octet-stream").lower(),
        size=size,
        content=content,
    )


class UploadSecurity(Middleware):
    """Reject uploads that fail :func:`validate_uploads`.

    Accepted files are exposed as ``context.extra["uploads"]`` (descriptors
    with their content) and any warnings as ``context.extra["upload_warnings"]``.
    """

    def __init__(
        self,
        policy: UploadPolicy = IMAGE_POLICY,
        field_name: str | None = None,
        sink: SecurityEventSink | None = None,
    ) -> None:
        self.policy = policy
        self.field_name = field_name
        self.sink = sink

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        if request.method.upper() in ("GET", "HEAD", "OPTIONS"):
            return None

        descriptors: list[UploadDescriptor] = []
        if request.headers.get("content-type", "").lower().startswith("multipart/form-data"):
            form = await request.form()
            for key, value in form.multi_items():
                if isinstance(value, UploadFile) and self.field_name in (None, key):
                    descriptors.append(await _describe(value, self.policy.max_size))

        result = validate_uploads(descriptors, self.policy)
        filenames = [d.filename for d in descriptors]

        if not result.ok:
            logger.warning("upload_rejected", files=filenames, errors=result.errors)
            emit(
                self.sink,
                SecurityEventType.FILE_UPLOAD_VIOLATION,
                ip=context.client_ip,
                files=filenames,
                errors=result.errors,
                user_agent=request.headers.get("user-agent"),
            )
            return error_response(
                400,
                ErrorCode.FILE_VALIDATION_ERROR,
                "File validation failed",
                details=result.errors,
            )

        if result.warnings:
            emit(
                self.sink,
                SecurityEventType.FILE_UPLOAD_WARNING,
                ip=context.client_ip,
                files=filenames,
                warnings=result.warnings,
                user_agent=request.headers.get("user-agent"),
            )
            context.extra["upload_warnings"] = result.warnings

        context.extra["uploads"] = descriptors
        return None
