"""Regex building blocks shared by the context sanitizers."""

from __future__ import annotations

import functools
import re
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])

# C0 controls except tab/newline/carriage return, DEL, C1 controls,
# Unicode line/paragraph separators, bidi overrides and zero-width marks,
# and the BOM.
CONTROL_CHARS_RE = re.compile(
    r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\u2028\u2029\u200b-\u200f\u202a-\u202e\u2066-\u2069\ufeff]"
)

# Same set including tab/newline/carriage return (single-line values such as filenames)
ALL_CONTROL_CHARS_RE = re.compile(
    r"[\x00-\x1f\x7f-\x9f\u2028\u2029\u200b-\u200f\u202a-\u202e\u2066-\u2069\ufeff]"
)


def _obfuscated(word: str) -> str:
    """Pattern for ``word`` with whitespace or NUL allowed between letters."""
    return r"[\s\x00]*".join(re.escape(ch) for ch in word)


JAVASCRIPT_SCHEME_RE = re.compile(_obfuscated("javascript") + r"[\s\x00]*:", re.IGNORECASE)
VBSCRIPT_SCHEME_RE = re.compile(_obfuscated("vbscript") + r"[\s\x00]*:", re.IGNORECASE)
DATA_SCHEME_RE = re.compile(r"\bdata\s*:", re.IGNORECASE)

SCRIPT_OPEN_RE = re.compile(r"<\s*script", re.IGNORECASE)
EVENT_HANDLER_RE = re.compile(r"\bon\w+\s*=", re.IGNORECASE)
ENCODED_SCRIPT_RE = re.compile(r"&lt;\s*/?\s*script", re.IGNORECASE)
ANGLE_TAG_RE = re.compile(r"<[^>]*>")

SQL_KEYWORDS_RE = re.compile(
    r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|EXECUTE|UNION|SCRIPT|TRUNCATE)\b",
    re.IGNORECASE,
)

# Shapes in which a SQL keyword is almost certainly an injection attempt
# rather than prose ("please select an option" stays untouched).
SQL_INJECTION_SHAPES: tuple[re.Pattern[str], ...] = (
    re.compile(r"['\";)]\s*(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|EXECUTE|UNION|TRUNCATE)\b", re.IGNORECASE),
    re.compile(r"\bUNION\s+(ALL\s+)?SELECT\b", re.IGNORECASE),
    re.compile(r"\b(DROP|ALTER|CREATE|TRUNCATE)\s+(TABLE|DATABASE|SCHEMA|VIEW|INDEX|USER)\b", re.IGNORECASE),
    re.compile(r"\bINSERT\s+INTO\b", re.IGNORECASE),
    re.compile(r"\bDELETE\s+FROM\b", re.IGNORECASE),
    re.compile(r"\bUPDATE\s+\w+\s+SET\b", re.IGNORECASE),
    re.compile(r"\bSELECT\s+(\*|[\w,\s]+?)\s+FROM\s+\w+\s*(WHERE|;|--|$)", re.IGNORECASE),
    re.compile(r"\bEXEC(UTE)?\s*(\(|xp_|sp_)", re.IGNORECASE),
)
SQL_COMMENT_RE = re.compile(r"--|/\*|\*/|`")
SQL_TAUTOLOGY_RE = re.compile(
    r"\b(OR|AND)\s+(\d+\s*=\s*\d+|'\w*'\s*=\s*'\w*'|\"\w*\"\s*=\s*\"\w*\")",
    re.IGNORECASE,
)

# Patterns that make an original value worth flagging as suspicious
SUSPICIOUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("script_tag", SCRIPT_OPEN_RE),
    ("javascript_scheme", JAVASCRIPT_SCHEME_RE),
    ("vbscript_scheme", VBSCRIPT_SCHEME_RE),
    ("event_handler", EVENT_HANDLER_RE),
    ("sql_keyword", re.compile(r"\b(union|select|insert|update|delete|drop)\s", re.IGNORECASE)),
)


def never_raise(default: Any = "") -> Callable[[F], F]:
    """Sanitizers sit upstream of validation: an unexpected failure degrades
    to ``default`` instead of propagating."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                logger.error("sanitizer_error", sanitizer=func.__name__, error=str(exc))
                return default

        return wrapper  # type: ignore[return-value]

    return decorator
