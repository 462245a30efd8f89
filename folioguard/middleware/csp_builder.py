"""Content-Security-Policy helpers: parse, merge extra sources, render."""

from __future__ import annotations

from typing import Mapping, Sequence

Directives = dict[str, list[str]]


def parse_csp(policy: str | None) -> Directives:
    """Split a policy string into ``{directive: [sources]}``.

    >>> parse_csp("default-src 'self'; upgrade-insecure-requests")
    {'default-src': ["'self'"], 'upgrade-insecure-requests': []}

    A repeated directive keeps its first occurrence, as browsers do.
    """
    directives: Directives = {}
    for part in (policy or "").split(";"):
        tokens = part.split()
        if not tokens:
            continue
        name = tokens[0].lower()
        directives.setdefault(name, tokens[1:])
    return directives


def merge_csp(base: Mapping[str, Sequence[str]], extra: Mapping[str, Sequence[str]]) -> Directives:
    """Append ``extra`` sources to ``base`` without duplicates.

    A directive only present in ``extra`` inherits ``default-src`` first, so
    adding ``font-src cdn.example`` does not silently drop ``'self'``.
    """
    merged: Directives = {name: list(sources) for name, sources in base.items()}
    for name, sources in extra.items():
        name = name.lower()
        if name not in merged:
            merged[name] = list(merged.get("default-src", []))
        current = merged[name]
        current.extend(s for s in dict.fromkeys(sources) if s not in current)
    return merged


def build_csp(directives: Mapping[str, Sequence[str]]) -> str:
    """Render directives back into a header value."""
    return "; ".join(
        " ".join((name, *sources)) for name, sources in directives.items()
    )


def csp_for_environment(policy: str, environment_sources: Mapping[str, Sequence[str]] | None) -> str:
    if not environment_sources:
        return policy
    return build_csp(merge_csp(parse_csp(policy), environment_sources))
