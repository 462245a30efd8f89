"""Recursive sanitization of request payloads, field by field."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from folioguard.sanitizer.emails import sanitize_email
from folioguard.sanitizer.html import DEFAULT_HTML_OPTIONS, HtmlOptions, sanitize_html
from folioguard.sanitizer.patterns import SUSPICIOUS_PATTERNS
from folioguard.sanitizer.text import (
    DATABASE_MAX_LENGTH,
    TextOptions,
    sanitize_for_database,
    sanitize_phone,
    sanitize_search_query,
    sanitize_text,
)
from folioguard.sanitizer.urls import sanitize_url

LIST_ITEM_MAX_LENGTH = 1000
# Payloads nesting containers deeper than this are rejected whole
MAX_DEPTH = 32


class FieldContext(str, Enum):
    TEXT = "text"
    HTML = "html"
    EMAIL = "email"
    URL = "url"
    PHONE = "phone"
    SEARCH = "search"
    DATABASE = "database"


def _names(values: Iterable[str]) -> frozenset[str]:
    return frozenset(values)


@dataclass(frozen=True)
class FieldPolicy:
    """Which sanitizer applies to which field name. Unlisted fields are text."""

    html_fields: frozenset[str] = frozenset()
    email_fields: frozenset[str] = frozenset({"email"})
    url_fields: frozenset[str] = frozenset(
        {"url", "website", "link", "liveUrl", "githubUrl", "featuredImage"}
    )
    phone_fields: frozenset[str] = frozenset({"phone", "phoneNumber", "mobile"})
    search_fields: frozenset[str] = frozenset({"search", "query", "q"})
    database_fields: frozenset[str] = frozenset()
    html_options: HtmlOptions = DEFAULT_HTML_OPTIONS
    text_max_length: int = 10_000
    database_max_length: int = DATABASE_MAX_LENGTH

    @classmethod
    def build(cls, **fields: Iterable[str] | Any) -> "FieldPolicy":
        """Accept plain lists/sets for the ``*_fields`` arguments."""
        converted = {
            key: _names(value) if key.endswith("_fields") else value
            for key, value in fields.items()
        }
        return cls(**converted)

    def context_for(self, name: str) -> FieldContext:
        # Checked in this order so a name listed twice resolves predictably
        if name in self.email_fields:
            return FieldContext.EMAIL
        if name in self.url_fields:
            return FieldContext.URL
        if name in self.phone_fields:
            return FieldContext.PHONE
        if name in self.search_fields:
            return FieldContext.SEARCH
        if name in self.database_fields:
            return FieldContext.DATABASE
        if name in self.html_fields:
            return FieldContext.HTML
        return FieldContext.TEXT


DEFAULT_FIELD_POLICY = FieldPolicy()


@dataclass
class SanitizationResult:
    sanitized: Any
    violations: list[str] = field(default_factory=list)
    depth_exceeded: bool = False
    # Field path -> attack pattern families found in the original value
    suspicious: dict[str, list[str]] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.violations)


def detect_suspicious(value: str) -> list[str]:
    """Names of the attack pattern families found in ``value``."""
    if not isinstance(value, str):
        return []
    return [name for name, pattern in SUSPICIOUS_PATTERNS if pattern.search(value)]


def sanitize_value(value: str, context: FieldContext, policy: FieldPolicy = DEFAULT_FIELD_POLICY,
                   max_length: int | None = None) -> str:
    """Apply the sanitizer for ``context`` to a single string."""
    if context is FieldContext.EMAIL:
        return sanitize_email(value)
    if context is FieldContext.URL:
        return sanitize_url(value)
    if context is FieldContext.PHONE:
        return sanitize_phone(value)
    if context is FieldContext.SEARCH:
        return sanitize_search_query(value)
    if context is FieldContext.DATABASE:
        return sanitize_for_database(value, max_length or policy.database_max_length)
    if context is FieldContext.HTML:
        return sanitize_html(value, policy.html_options)
    return sanitize_text(value, TextOptions(max_length=max_length or policy.text_max_length))


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _sanitize_string(path: str, name: str, value: str, policy: FieldPolicy,
                     result: SanitizationResult, in_list: bool) -> str:
    context = policy.context_for(name)
    max_length = LIST_ITEM_MAX_LENGTH if in_list and context is FieldContext.TEXT else None
    cleaned = sanitize_value(value, context, policy, max_length)
    if cleaned != value:
        result.violations.append(f"Field '{path}' was sanitized")
        families = detect_suspicious(value)
        if families:
            result.violations.append(f"Field '{path}' contained suspicious content: {', '.join(families)}")
            result.suspicious[path] = families
    return cleaned


class _TooDeep(Exception):
    def __init__(self, path: str) -> None:
        super().__init__(path)
        self.path = path


def _walk(value: Any, path: str, name: str, policy: FieldPolicy,
          result: SanitizationResult, in_list: bool = False, depth: int = 0) -> Any:
    if isinstance(value, str):
        return _sanitize_string(path, name, value, policy, result, in_list)
    if isinstance(value, (dict, list, tuple)) and depth >= MAX_DEPTH:
        raise _TooDeep(path)
    if isinstance(value, dict):
        return {
            key: _walk(item, _join(path, str(key)), str(key), policy, result, depth=depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [
            _walk(item, f"{path}[{index}]", name, policy, result, in_list=True, depth=depth + 1)
            for index, item in enumerate(value)
        ]
    return value


def sanitize_object(data: Any, policy: FieldPolicy | None = None) -> SanitizationResult:
    """Sanitize every string in a nested structure according to ``policy``.

    Returns the sanitized copy and one violation line per field that changed
    (plus a second line naming the pattern families when the original looked
    like an attack). A payload nesting containers deeper than ``MAX_DEPTH``
    is discarded whole: ``sanitized`` is ``None`` and ``depth_exceeded`` is set.
    The input is never mutated.
    """
    result = SanitizationResult(sanitized=None)
    try:
        result.sanitized = _walk(data, "", "", policy or DEFAULT_FIELD_POLICY, result)
    except _TooDeep as exc:
        return SanitizationResult(
            sanitized=None,
            violations=[f"Field '{exc.path}' exceeds the maximum nesting depth of {MAX_DEPTH}"],
            depth_exceeded=True,
        )
    return result
