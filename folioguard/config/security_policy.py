"""Named rate-limit profiles for the portfolio's request purposes."""

from __future__ import annotations

from dataclasses import dataclass

from folioguard.config.loader import SecuritySettings, get_settings


@dataclass(frozen=True)
class RateLimitProfile:
    """Threshold for one request purpose (login, contact form, uploads, generic API)."""

    purpose: str
    max_requests: int
    window_seconds: int
    message: str = "Too many requests. Please try again later."


# Default thresholds (overridable through FOLIO_RATE_LIMIT_* settings)
API_RATE_LIMIT = RateLimitProfile("api", 100, 15 * 60)
CONTACT_RATE_LIMIT = RateLimitProfile(
    "contact", 5, 15 * 60, "Too many contact form submissions. Please try again later."
)
LOGIN_RATE_LIMIT = RateLimitProfile(
    "login", 5, 15 * 60, "Too many login attempts. Please try again later."
)
UPLOAD_RATE_LIMIT = RateLimitProfile(
    "upload", 20, 60 * 60, "Too many file uploads. Please try again later."
)

_DEFAULT_PROFILES = {
    profile.purpose: profile
    for profile in (API_RATE_LIMIT, CONTACT_RATE_LIMIT, LOGIN_RATE_LIMIT, UPLOAD_RATE_LIMIT)
}


def rate_limit_profile(purpose: str, settings: SecuritySettings | None = None) -> RateLimitProfile:
    """Return the profile for ``purpose`` with thresholds taken from settings.

    Raises KeyError for an unknown purpose.
    """
    base = _DEFAULT_PROFILES[purpose]
    settings = settings or get_settings()
    max_requests = getattr(settings, f"rate_limit_{purpose}_max", base.max_requests)
    window = getattr(settings, f"rate_limit_{purpose}_window_seconds", base.window_seconds)
    return RateLimitProfile(purpose, int(max_requests), int(window), base.message)
