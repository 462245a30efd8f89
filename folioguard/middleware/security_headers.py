"""Security headers set on every response, error responses included."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from starlette.requests import Request
from starlette.responses import Response

from folioguard.config.loader import get_settings
from folioguard.middleware.csp_builder import csp_for_environment
from folioguard.middleware.pipeline import Middleware, RequestContext

logger = structlog.get_logger()

_PRESETS_PATH = Path(__file__).parent.parent / "config" / "header_presets.yaml"

# Fingerprinting headers removed from every response
_STRIP_HEADERS = ("server", "x-powered-by")

_presets: dict[str, Any] | None = None


def load_presets() -> dict[str, Any]:
    """Load header presets from YAML, caching after first load."""
    global _presets
    if _presets is None:
        with open(_PRESETS_PATH) as f:
            _presets = yaml.safe_load(f) or {}
        logger.debug("header_presets_loaded", presets=sorted(k for k in _presets if k != "csp_sources"))
    return _presets


def reset_presets_cache() -> None:
    """Reset the presets cache (for testing)."""
    global _presets
    _presets = None


def resolve_headers(preset: str, environment: str) -> dict[str, str]:
    """Header map for ``preset`` with the environment's CSP sources merged in.

    Raises KeyError for an unknown preset.
    """
    presets = load_presets()
    headers = {name: str(value) for name, value in presets[preset].items()}
    extra_sources = presets.get("csp_sources", {}).get(environment.lower())
    if "content-security-policy" in headers:
        headers["content-security-policy"] = csp_for_environment(
            headers["content-security-policy"], extra_sources
        )
    return headers


class SecurityHeaders(Middleware):
    """Set the preset's headers unconditionally and strip server fingerprints.

    Headers are resolved once at construction; a bad preset name fails at
    startup rather than on the first request.
    """

    def __init__(self, preset: str | None = None, environment: str | None = None) -> None:
        settings = get_settings()
        self.preset = preset or settings.header_preset
        self.environment = environment or settings.environment
        self.headers = resolve_headers(self.preset, self.environment)

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        return None

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        for header in _STRIP_HEADERS:
            if header in response.headers:
                del response.headers[header]
        for name, value in self.headers.items():
            response.headers[name] = value
        return response
