"""Email address sanitization. All-or-nothing: a rejected address becomes ``""``."""

from __future__ import annotations

import re
from typing import Any

from folioguard.sanitizer.patterns import never_raise

# RFC 5321 ceilings
MAX_ADDRESS_LENGTH = 254
MAX_LOCAL_PART_LENGTH = 64
MAX_DOMAIN_LENGTH = 253

_EMAIL_RE = re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}")
_STRIP_RE = re.compile(r"[<>'\"]")
_SUSPICIOUS_RE = re.compile(
    r"javascript:|vbscript:|data:|<\s*script|script>|on\w+=",
    re.IGNORECASE,
)


@never_raise(default="")
def sanitize_email(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    raw = value.strip()
    if _SUSPICIOUS_RE.search(raw):
        return ""

    email = _STRIP_RE.sub("", raw.lower())
    if len(email) > MAX_ADDRESS_LENGTH:
        return ""
    if not _EMAIL_RE.fullmatch(email):
        return ""
    if _SUSPICIOUS_RE.search(email):
        return ""

    local, _, domain = email.partition("@")
    if not local or not domain:
        return ""
    if len(local) > MAX_LOCAL_PART_LENGTH or len(domain) > MAX_DOMAIN_LENGTH:
        return ""
    if ".." in email or local.startswith(".") or local.endswith("."):
        return ""
    return email
