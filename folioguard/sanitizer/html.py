"""HTML sanitization for rich-text fields (blog bodies, project descriptions).

Script and style blocks, event handlers, dangerous URI schemes and
container tags are removed first with regular expressions. Only then does
nh3 filter the remaining tags and attributes against the allow-list and
re-serialize the fragment. Removing blocks before allow-list filtering
keeps an allowed container tag from carrying a disallowed block's content
out as text. The whole sequence is repeated until the output stops
changing, so payloads that reassemble after one removal
(``<scr<script>ipt>``) do not survive.
"""

from __future__ import annotations

import html as html_entities
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

import nh3

from folioguard.sanitizer.patterns import (
    CONTROL_CHARS_RE,
    JAVASCRIPT_SCHEME_RE,
    VBSCRIPT_SCHEME_RE,
    never_raise,
)
from folioguard.sanitizer.urls import sanitize_url

DEFAULT_ALLOWED_TAGS: frozenset[str] = frozenset({
    "p", "br", "strong", "em", "u",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "ul", "ol", "li", "blockquote", "a",
})
DEFAULT_ALLOWED_ATTRIBUTES: Mapping[str, tuple[str, ...]] = {
    "a": ("href", "title"),
    "*": ("class",),
}

RICH_ALLOWED_TAGS: frozenset[str] = DEFAULT_ALLOWED_TAGS | {"i", "b", "img", "code", "pre"}
RICH_ALLOWED_ATTRIBUTES: Mapping[str, tuple[str, ...]] = {
    "a": ("href", "title", "target"),
    "img": ("src", "alt", "title", "width", "height"),
    "*": ("class", "id"),
}

_URL_ATTRIBUTES = frozenset({"href", "src"})
_URL_SCHEMES = ("http", "https")
_MAX_PASSES = 5

_SCRIPT_BLOCK_RE = re.compile(r"<\s*(script|style)\b[^>]*>.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL)
_SCRIPT_TAG_RE = re.compile(r"<\s*/?\s*(script|style)\b[^>]*>?", re.IGNORECASE)

_DATA_URI_RE = re.compile(
    r"data\s*:\s*(text/html|application/(x-)?javascript|text/javascript|image/svg\+xml)",
    re.IGNORECASE,
)
_EVENT_ATTR_RE = re.compile(
    r"""[\s/]*\bon[a-z]+\s*=\s*("[^"]*"|'[^']*'|[^\s>]*)""",
    re.IGNORECASE,
)
_EVENT_FRAGMENT_RE = re.compile(r"on[a-z]+\s*=", re.IGNORECASE)
_STYLE_ATTR_RE = re.compile(
    r"""\s*style\s*=\s*("[^"]*(expression\s*\(|javascript\s*:)[^"]*"|'[^']*(expression\s*\(|javascript\s*:)[^']*')""",
    re.IGNORECASE,
)

_OBJECT_BLOCK_RE = re.compile(
    r"<\s*(object|embed|applet|iframe|frame|frameset|noscript|template)\b[^>]*>.*?<\s*/\s*\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_OBJECT_TAG_RE = re.compile(
    r"<\s*/?\s*(object|embed|applet|iframe|frame|frameset|noscript|template)\b[^>]*>?",
    re.IGNORECASE,
)
_FORM_TAG_RE = re.compile(r"<\s*/?\s*form\b[^>]*>", re.IGNORECASE)
_FORM_CONTROL_RE = re.compile(r"<\s*/?\s*(input|button|textarea|select|option)\b[^>]*>", re.IGNORECASE)
_DOCUMENT_TAG_RE = re.compile(
    r"<\s*/?\s*(meta|link|base|title|head|html|body|svg|math|xml)\b[^>]*>",
    re.IGNORECASE,
)
_COMMENT_RE = re.compile(r"<!--.*?(-->|$)", re.DOTALL)
_CDATA_RE = re.compile(r"<!\[CDATA\[.*?(\]\]>|$)", re.DOTALL)
_DECLARATION_RE = re.compile(r"<[!?][^>]*>?")

_TAG_RE = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)\b([^<>]*)>")
_ATTR_VALUE_STRIP_RE = re.compile(r"[<>\"'`]")
_ENCODED_SCRIPT_RE = re.compile(r"&lt;(\s*/?\s*script)", re.IGNORECASE)


@dataclass(frozen=True)
class HtmlOptions:
    allowed_tags: frozenset[str] = DEFAULT_ALLOWED_TAGS
    allowed_attributes: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_ALLOWED_ATTRIBUTES)
    )
    remove_scripts: bool = True
    remove_events: bool = True
    remove_forms: bool = True
    remove_objects: bool = True


DEFAULT_HTML_OPTIONS = HtmlOptions()
RICH_HTML_OPTIONS = HtmlOptions(
    allowed_tags=RICH_ALLOWED_TAGS,
    allowed_attributes=dict(RICH_ALLOWED_ATTRIBUTES),
)


def _neutralize_schemes(value: str) -> str:
    value = JAVASCRIPT_SCHEME_RE.sub("", value)
    value = VBSCRIPT_SCHEME_RE.sub("", value)
    return _DATA_URI_RE.sub("data:text/plain", value)


def _strip_dangerous(value: str, opts: HtmlOptions) -> str:
    if opts.remove_scripts:
        value = _SCRIPT_BLOCK_RE.sub("", value)
        value = _SCRIPT_TAG_RE.sub("", value)
        value = _neutralize_schemes(value)
    if opts.remove_events:
        value = _EVENT_ATTR_RE.sub("", value)
        value = _EVENT_FRAGMENT_RE.sub("", value)
    value = _STYLE_ATTR_RE.sub("", value)
    if opts.remove_objects:
        value = _OBJECT_BLOCK_RE.sub("", value)
        value = _OBJECT_TAG_RE.sub("", value)
    if opts.remove_forms:
        # Form wrappers go, their text content stays
        value = _FORM_TAG_RE.sub("", value)
        value = _FORM_CONTROL_RE.sub("", value)
    value = _DOCUMENT_TAG_RE.sub("", value)
    value = _COMMENT_RE.sub("", value)
    value = _CDATA_RE.sub("", value)
    return _DECLARATION_RE.sub("", value)


def _allowed_attributes(allowed: Mapping[str, tuple[str, ...]]) -> dict[str, set[str]]:
    return {tag.lower(): {a.lower() for a in names} for tag, names in allowed.items()}


def _clean_attribute_value(name: str, value: str) -> str | None:
    value = CONTROL_CHARS_RE.sub("", html_entities.unescape(value))
    if name in _URL_ATTRIBUTES:
        return sanitize_url(value) or None
    value = _neutralize_schemes(value)
    value = re.sub(r"data\s*:", "", value, flags=re.IGNORECASE)
    value = _EVENT_FRAGMENT_RE.sub("", value)
    return _ATTR_VALUE_STRIP_RE.sub("", value)


def _attribute_filter(tag: str, attribute: str, value: str) -> str | None:
    return _clean_attribute_value(attribute.lower(), value)


def _filter_tags(value: str, opts: HtmlOptions) -> str:
    """Keep allow-listed tags and attributes; everything else becomes text or goes."""
    return nh3.clean(
        value,
        tags={t.lower() for t in opts.allowed_tags},
        attributes=_allowed_attributes(opts.allowed_attributes),
        attribute_filter=_attribute_filter,
        url_schemes=set(_URL_SCHEMES),
        link_rel=None,
        strip_comments=True,
    )


def _escape_text(segment: str) -> str:
    return segment.replace("<", "&lt;").replace(">", "&gt;")


def _single_pass(value: str, opts: HtmlOptions) -> str:
    return _filter_tags(_strip_dangerous(value, opts), opts)


def _plain_text_fallback(value: str) -> str:
    """Used when the pass budget runs out: drop all markup and keep shrinking
    until no scheme or handler fragment can be reassembled."""
    value = _escape_text(_TAG_RE.sub("", value))
    while True:
        reduced = _EVENT_FRAGMENT_RE.sub("", _neutralize_schemes(value))
        if reduced == value:
            return value
        value = reduced


@never_raise(default="")
def sanitize_html(value: Any, options: HtmlOptions | None = None) -> Any:
    """Return HTML containing only allow-listed tags and attributes.

    Non-string input is returned unchanged.
    """
    if not isinstance(value, str):
        return value
    opts = options or DEFAULT_HTML_OPTIONS

    result = CONTROL_CHARS_RE.sub("", value)
    for _ in range(_MAX_PASSES):
        cleaned = _single_pass(result, opts)
        if cleaned == result:
            break
        result = cleaned
    else:
        result = _plain_text_fallback(result)

    # Entity-encoded script openers would become live markup if decoded twice
    return _ENCODED_SCRIPT_RE.sub(r"&amp;lt;\1", result)
