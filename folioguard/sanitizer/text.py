"""Plain-text sanitization and the restricted contexts built on it
(phone numbers, search queries, fields headed for storage)."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any

from folioguard.sanitizer.patterns import (
    ANGLE_TAG_RE,
    CONTROL_CHARS_RE,
    DATA_SCHEME_RE,
    ENCODED_SCRIPT_RE,
    EVENT_HANDLER_RE,
    JAVASCRIPT_SCHEME_RE,
    SQL_COMMENT_RE,
    SQL_INJECTION_SHAPES,
    SQL_KEYWORDS_RE,
    SQL_TAUTOLOGY_RE,
    VBSCRIPT_SCHEME_RE,
    never_raise,
)

DEFAULT_MAX_LENGTH = 10_000
SEARCH_MAX_LENGTH = 200
DATABASE_MAX_LENGTH = 50_000
PHONE_MAX_LENGTH = 30
PHONE_MAX_DIGITS = 15  # E.164

SEARCH_ALLOWED_CHARACTERS = r"a-zA-Z0-9\s\-_.,!?@#"

# Entities decoded before re-encoding so already-encoded input is not double encoded
_DECODE_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#x27;", "'"),
    ("&#39;", "'"),
    ("&#x2F;", "/"),
    ("&#x60;", "`"),
    ("&amp;", "&"),
)
_ENCODE_CHARS = {
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "`": "&#x60;",
}
_ENCODE_RE = re.compile("[<>\"'`]")
_PARTIAL_ENTITY_RE = re.compile(r"&#?[a-zA-Z0-9]{0,6}$")
_PHONE_DISALLOWED_RE = re.compile(r"[^\d\s+()\-]")
_NON_DIGIT_RE = re.compile(r"\D")


@dataclass(frozen=True)
class TextOptions:
    max_length: int = DEFAULT_MAX_LENGTH
    allow_html: bool = False
    trim_whitespace: bool = True
    prevent_sql_injection: bool = True
    prevent_xss: bool = True
    allowed_characters: str | None = None  # body of a regex character class
    remove_control_chars: bool = True


DEFAULT_TEXT_OPTIONS = TextOptions()


def strip_sql_patterns(value: str) -> str:
    """Remove SQL comment tokens and tautologies; keywords only when the
    value is shaped like an injected statement."""
    if any(shape.search(value) for shape in SQL_INJECTION_SHAPES):
        value = SQL_KEYWORDS_RE.sub("", value)
        value = value.replace(";", "")
    value = SQL_TAUTOLOGY_RE.sub("", value)
    return SQL_COMMENT_RE.sub("", value)


def strip_xss_vectors(value: str) -> str:
    value = JAVASCRIPT_SCHEME_RE.sub("", value)
    value = VBSCRIPT_SCHEME_RE.sub("", value)
    value = DATA_SCHEME_RE.sub("", value)
    value = EVENT_HANDLER_RE.sub("", value)
    value = ANGLE_TAG_RE.sub("", value)
    return ENCODED_SCRIPT_RE.sub("", value)


def encode_entities(value: str) -> str:
    for entity, char in _DECODE_ENTITIES:
        value = value.replace(entity, char)
    return _ENCODE_RE.sub(lambda m: _ENCODE_CHARS[m.group(0)], value)


def truncate(value: str, max_length: int) -> str:
    """Cut to ``max_length`` without leaving half an entity at the end."""
    if len(value) <= max_length:
        return value
    cut = value[:max_length]
    return _PARTIAL_ENTITY_RE.sub("", cut) if "&" in cut[-8:] else cut


@never_raise(default="")
def sanitize_text(value: Any, options: TextOptions | None = None) -> Any:
    """Make an untrusted string safe to store and render as plain text.

    Non-string input is returned unchanged.
    """
    if not isinstance(value, str):
        return value
    opts = options or DEFAULT_TEXT_OPTIONS
    result = value

    if opts.trim_whitespace:
        result = result.strip()
    if opts.remove_control_chars:
        result = CONTROL_CHARS_RE.sub("", result)
    if opts.prevent_sql_injection:
        result = strip_sql_patterns(result)
    if opts.prevent_xss and not opts.allow_html:
        result = strip_xss_vectors(result)
    if opts.allowed_characters:
        result = re.sub(f"[^{opts.allowed_characters}]", "", result)

    if opts.allow_html:
        # Deferred import: html sanitizer reuses the URL and text helpers
        from folioguard.sanitizer.html import sanitize_html

        result = sanitize_html(result)
    else:
        result = encode_entities(result)

    if opts.trim_whitespace:
        result = result.strip()
    return truncate(result, opts.max_length)


@never_raise(default="")
def sanitize_phone(value: Any) -> str:
    """Digits, spaces, ``+ ( ) -`` only; more than 15 digits is rejected."""
    if not isinstance(value, str):
        return ""
    filtered = _PHONE_DISALLOWED_RE.sub("", value)
    if len(_NON_DIGIT_RE.sub("", filtered)) > PHONE_MAX_DIGITS:
        return ""
    return sanitize_text(
        filtered,
        TextOptions(max_length=PHONE_MAX_LENGTH, prevent_sql_injection=False),
    )


@never_raise(default="")
def sanitize_search_query(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    filtered = re.sub(f"[^{SEARCH_ALLOWED_CHARACTERS}]", "", value)
    return sanitize_text(filtered, TextOptions(max_length=SEARCH_MAX_LENGTH))


@never_raise(default="")
def sanitize_for_database(value: Any, max_length: int = DATABASE_MAX_LENGTH) -> Any:
    if not isinstance(value, str):
        return value
    return sanitize_text(
        value,
        replace(DEFAULT_TEXT_OPTIONS, max_length=max_length),
    )
