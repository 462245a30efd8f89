"""Tests for the request sanitization middleware."""

from __future__ import annotations

import json

import pytest
from starlette.responses import Response

from folioguard.middleware.pipeline import RequestContext
from folioguard.middleware.request_sanitizer import InputSanitization
from folioguard.sanitizer import FieldPolicy

JSON = {"content-type": "application/json"}


async def _ok(request, context):
    return Response(content="ok")


def _json_request(factory, payload, **kwargs):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return factory(method="POST", headers={**JSON, **kwargs.pop("headers", {})}, body=body, **kwargs)


def _deep(depth):
    value = "x"
    for _ in range(depth):
        value = {"a": value}
    return value


class TestJsonBody:
    @pytest.mark.asyncio
    async def test_sanitized_body_in_context(self, request_factory, event_sink):
        context = RequestContext(client_ip="192.0.2.1")
        handler = InputSanitization(sink=event_sink).wrap(_ok)

        response = await handler(
            _json_request(request_factory, {"name": "<b>Ann</b>", "email": "ANN@Example.com"}), context
        )

        assert response.status_code == 200
        assert context.extra["body"] == {"name": "Ann", "email": "ann@example.com"}
        assert "Field 'name' was sanitized" in context.extra["sanitization_violations"]
        [event] = event_sink.recent()
        assert event["type"] == "VALIDATION_FAILURE"
        assert event["ip"] == "192.0.2.1"

    @pytest.mark.asyncio
    async def test_clean_body_emits_nothing(self, request_factory, event_sink):
        context = RequestContext()
        handler = InputSanitization(sink=event_sink).wrap(_ok)

        await handler(_json_request(request_factory, {"name": "Ann"}), context)

        assert context.extra["body"] == {"name": "Ann"}
        assert "sanitization_violations" not in context.extra
        assert len(event_sink) == 0

    @pytest.mark.asyncio
    async def test_invalid_json(self, request_factory):
        handler = InputSanitization().wrap(_ok)
        response = await handler(_json_request(request_factory, b"{not json"), RequestContext())

        assert response.status_code == 400
        assert json.loads(response.body)["error"] == {
            "code": "INPUT_VALIDATION_ERROR",
            "message": "Request body is not valid JSON",
        }

    @pytest.mark.asyncio
    async def test_deeply_nested_body_rejected(self, request_factory):
        body = b'{"a":' * 600 + b'"x"' + b"}" * 600
        handler = InputSanitization().wrap(_ok)

        response = await handler(_json_request(request_factory, body), RequestContext())

        assert response.status_code == 400
        assert json.loads(response.body)["error"]["code"] == "INPUT_VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_body_beyond_parser_recursion_rejected(self, request_factory):
        body = b"[" * 5000 + b"]" * 5000
        handler = InputSanitization().wrap(_ok)

        response = await handler(_json_request(request_factory, body), RequestContext())

        assert response.status_code == 400
        assert json.loads(response.body)["error"]["code"] == "INPUT_VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_depth_rejection_ignores_strict_flag(self, request_factory):
        body = json.dumps(_deep(40)).encode()
        context = RequestContext()
        response = await InputSanitization(strict=False).wrap(_ok)(_json_request(request_factory, body), context)

        assert response.status_code == 400
        assert json.loads(response.body)["error"]["message"] == "Request body is nested too deeply"
        assert "body" not in context.extra

    @pytest.mark.asyncio
    async def test_empty_body_allowed(self, request_factory):
        context = RequestContext()
        response = await InputSanitization().wrap(_ok)(_json_request(request_factory, b""), context)
        assert response.status_code == 200
        assert "body" not in context.extra

    @pytest.mark.asyncio
    async def test_policy_routes_html_fields(self, request_factory):
        context = RequestContext()
        policy = FieldPolicy.build(html_fields=["content"])
        await InputSanitization(policy).wrap(_ok)(
            _json_request(request_factory, {"content": '<p onclick="x()">Hi</p>'}), context
        )
        assert context.extra["body"]["content"] == "<p>Hi</p>"


class TestStrictMode:
    @pytest.mark.asyncio
    async def test_violations_rejected(self, request_factory):
        handler = InputSanitization(strict=True).wrap(_ok)

        response = await handler(_json_request(request_factory, {"bio": "<script>x</script>"}), RequestContext())

        assert response.status_code == 400
        error = json.loads(response.body)["error"]
        assert error["code"] == "INPUT_VALIDATION_ERROR"
        assert error["message"] == "Request contains potentially malicious content"
        assert "Field 'bio' was sanitized" in error["details"]

    def test_strict_from_settings(self, monkeypatch):
        monkeypatch.setenv("FOLIO_SANITIZE_STRICT_MODE", "true")
        assert InputSanitization().strict is True

    @pytest.mark.asyncio
    async def test_clean_request_passes(self, request_factory):
        handler = InputSanitization(strict=True).wrap(_ok)
        response = await handler(_json_request(request_factory, {"bio": "Hello"}), RequestContext())
        assert response.status_code == 200


class TestQueryFormHeaders:
    @pytest.mark.asyncio
    async def test_query_sanitized(self, request_factory):
        context = RequestContext()
        await InputSanitization().wrap(_ok)(request_factory(query_string=b"q=%3Cscript%3E&page=2"), context)
        assert context.extra["query"] == {"q": "script", "page": "2"}
        assert "Field 'q' was sanitized" in context.extra["sanitization_violations"]

    @pytest.mark.asyncio
    async def test_query_sanitization_optional(self, request_factory):
        context = RequestContext()
        await InputSanitization(sanitize_query=False).wrap(_ok)(request_factory(query_string=b"q=x"), context)
        assert "query" not in context.extra

    @pytest.mark.asyncio
    async def test_form_fields(self, request_factory):
        context = RequestContext()
        request = request_factory(
            method="POST",
            headers={"content-type": "application/x-www-form-urlencoded"},
            body=b"name=%3Ci%3EAnn%3C%2Fi%3E&phone=555-0100",
        )
        await InputSanitization().wrap(_ok)(request, context)
        assert context.extra["form"] == {"name": "Ann", "phone": "555-0100"}

    @pytest.mark.asyncio
    async def test_headers_sanitized_when_enabled(self, request_factory):
        context = RequestContext()
        request = request_factory(headers={"user-agent": "<script>x</script>Mozilla", "referer": "https://a.example/"})
        await InputSanitization(sanitize_headers=True).wrap(_ok)(request, context)

        assert context.extra["headers"]["user-agent"] == "xMozilla"
        assert context.extra["headers"]["referer"] == "https://a.example/"
        assert "Sanitized header: user-agent" in context.extra["sanitization_violations"]


class TestSuspiciousActivity:
    @pytest.mark.asyncio
    async def test_attack_patterns_reported_per_field(self, request_factory, event_sink):
        handler = InputSanitization(sink=event_sink).wrap(_ok)
        request = _json_request(
            request_factory,
            {"name": "<script>alert(1)</script>", "profile": {"bio": "hello"}},
            query_string=b"q=javascript:alert(1)",
        )

        response = await handler(request, RequestContext(client_ip="198.51.100.7"))

        assert response.status_code == 200
        suspicious, validation = event_sink.recent()
        assert validation["type"] == "VALIDATION_FAILURE"
        assert suspicious["type"] == "SUSPICIOUS_ACTIVITY"
        assert suspicious["ip"] == "198.51.100.7"
        assert set(suspicious["fields"]) == {"body.name", "query.q"}

    @pytest.mark.asyncio
    async def test_plain_markup_is_not_suspicious(self, request_factory, event_sink):
        handler = InputSanitization(sink=event_sink).wrap(_ok)
        await handler(_json_request(request_factory, {"name": "<b>Ann</b>"}), RequestContext())

        assert [e["type"] for e in event_sink.recent()] == ["VALIDATION_FAILURE"]
