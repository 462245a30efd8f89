"""Tests for CSP parse/merge/render helpers."""

from __future__ import annotations

from folioguard.middleware.csp_builder import (
    build_csp,
    csp_for_environment,
    merge_csp,
    parse_csp,
)


class TestParseCsp:
    def test_simple_policy(self):
        assert parse_csp("default-src 'self'; script-src 'self' https:") == {
            "default-src": ["'self'"],
            "script-src": ["'self'", "https:"],
        }

    def test_empty_and_none(self):
        assert parse_csp("") == {}
        assert parse_csp("   ") == {}
        assert parse_csp(None) == {}

    def test_valueless_directive(self):
        assert parse_csp("upgrade-insecure-requests") == {"upgrade-insecure-requests": []}

    def test_stray_semicolons_and_whitespace(self):
        assert parse_csp("  default-src 'self' ;;; script-src   'self'  ;") == {
            "default-src": ["'self'"],
            "script-src": ["'self'"],
        }

    def test_directive_names_lowercased(self):
        assert "default-src" in parse_csp("Default-Src 'self'")

    def test_first_occurrence_wins(self):
        assert parse_csp("script-src 'self'; script-src *") == {"script-src": ["'self'"]}


class TestMergeCsp:
    def test_extra_sources_appended(self):
        merged = merge_csp({"style-src": ["'self'"]}, {"style-src": ["fonts.googleapis.com"]})
        assert merged == {"style-src": ["'self'", "fonts.googleapis.com"]}

    def test_no_duplicates(self):
        merged = merge_csp({"img-src": ["'self'", "https:"]}, {"img-src": ["https:", "https:", "cdn.example"]})
        assert merged["img-src"] == ["'self'", "https:", "cdn.example"]

    def test_new_directive_inherits_default_src(self):
        merged = merge_csp({"default-src": ["'self'"]}, {"font-src": ["cdn.example"]})
        assert merged["font-src"] == ["'self'", "cdn.example"]

    def test_new_directive_without_default_src(self):
        assert merge_csp({}, {"font-src": ["cdn.example"]}) == {"font-src": ["cdn.example"]}

    def test_base_not_mutated(self):
        base = {"script-src": ["'self'"]}
        merge_csp(base, {"script-src": ["cdn.example"]})
        assert base == {"script-src": ["'self'"]}


class TestBuildCsp:
    def test_round_trip_preserves_order(self):
        policy = "default-src 'self'; script-src 'self' https:; upgrade-insecure-requests"
        assert build_csp(parse_csp(policy)) == policy

    def test_empty(self):
        assert build_csp({}) == ""


class TestCspForEnvironment:
    def test_no_sources_returns_policy_unchanged(self):
        assert csp_for_environment("default-src 'self'", None) == "default-src 'self'"
        assert csp_for_environment("default-src 'self'", {}) == "default-src 'self'"

    def test_sources_merged(self):
        result = csp_for_environment(
            "default-src 'self'; script-src 'self'",
            {"script-src": ["'unsafe-eval'"]},
        )
        assert result == "default-src 'self'; script-src 'self' 'unsafe-eval'"
