"""Context-specific sanitizers. None of them raise on malformed input."""

from folioguard.sanitizer.emails import sanitize_email
from folioguard.sanitizer.html import (
    DEFAULT_HTML_OPTIONS,
    RICH_HTML_OPTIONS,
    HtmlOptions,
    sanitize_html,
)
from folioguard.sanitizer.objects import (
    DEFAULT_FIELD_POLICY,
    FieldContext,
    FieldPolicy,
    SanitizationResult,
    detect_suspicious,
    sanitize_object,
    sanitize_value,
)
from folioguard.sanitizer.text import (
    TextOptions,
    sanitize_for_database,
    sanitize_phone,
    sanitize_search_query,
    sanitize_text,
)
from folioguard.sanitizer.urls import UrlOptions, sanitize_url

__all__ = [
    "DEFAULT_FIELD_POLICY",
    "DEFAULT_HTML_OPTIONS",
    "RICH_HTML_OPTIONS",
    "FieldContext",
    "FieldPolicy",
    "HtmlOptions",
    "SanitizationResult",
    "TextOptions",
    "UrlOptions",
    "detect_suspicious",
    "sanitize_email",
    "sanitize_for_database",
    "sanitize_html",
    "sanitize_object",
    "sanitize_phone",
    "sanitize_search_query",
    "sanitize_text",
    "sanitize_url",
    "sanitize_value",
]
