"""Middleware chain order, short-circuit and composition tests."""

from __future__ import annotations

import json

import pytest
from starlette.applications import Starlette
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route
from starlette.testclient import TestClient as StarletteTestClient

from folioguard.middleware.pipeline import (
    Middleware,
    MiddlewarePipeline,
    RequestContext,
    as_endpoint,
    client_ip,
    compose,
)


class TrackingMiddleware(Middleware):
    """Middleware that records its execution order."""

    def __init__(self, name: str, order_log: list[str]):
        self._name = name
        self._order_log = order_log

    @property
    def name(self) -> str:
        return self._name

    async def process_request(self, request, context):
        self._order_log.append(f"req:{self._name}")
        return None

    async def process_response(self, response, context):
        self._order_log.append(f"resp:{self._name}")
        return response


class Blocking(TrackingMiddleware):
    async def process_request(self, request, context):
        self._order_log.append(f"req:{self._name}")
        return Response(content="blocked", status_code=403)


class NeedsUser(Middleware):
    requires = ("user_id",)

    async def process_request(self, request, context):
        return None


class NeedsUploads(Middleware):
    requires = ("uploads",)

    async def process_request(self, request, context):
        return None


def _handler(order_log: list[str]):
    async def handler(request, context):
        order_log.append("handler")
        return Response(content="ok")

    return handler


class TestCompose:
    @pytest.mark.asyncio
    async def test_first_middleware_is_outermost(self):
        log: list[str] = []
        chain = compose(
            TrackingMiddleware("first", log),
            TrackingMiddleware("second", log),
            TrackingMiddleware("third", log),
        )(_handler(log))

        response = await chain(None, RequestContext())

        assert response.body == b"ok"
        assert log == [
            "req:first", "req:second", "req:third",
            "handler",
            "resp:third", "resp:second", "resp:first",
        ]

    @pytest.mark.asyncio
    async def test_short_circuit_skips_inner_layers(self):
        log: list[str] = []
        chain = compose(
            TrackingMiddleware("outer", log),
            Blocking("gate", log),
            TrackingMiddleware("inner", log),
        )(_handler(log))

        response = await chain(None, RequestContext())

        assert response.status_code == 403
        # The blocking layer and every layer outside it still see the response
        assert log == ["req:outer", "req:gate", "resp:gate", "resp:outer"]

    @pytest.mark.asyncio
    async def test_nested_compose_is_equivalent(self):
        flat_log: list[str] = []
        flat = compose(
            TrackingMiddleware("a", flat_log),
            TrackingMiddleware("b", flat_log),
            TrackingMiddleware("c", flat_log),
        )(_handler(flat_log))

        nested_log: list[str] = []
        inner = compose(TrackingMiddleware("b", nested_log), TrackingMiddleware("c", nested_log))
        nested = compose(TrackingMiddleware("a", nested_log))(inner(_handler(nested_log)))

        await flat(None, RequestContext())
        await nested(None, RequestContext())
        assert flat_log == nested_log

    @pytest.mark.asyncio
    async def test_empty_compose_is_identity(self):
        log: list[str] = []
        handler = _handler(log)
        assert compose()(handler) is handler


class TestRequirements:
    @pytest.mark.asyncio
    async def test_missing_user_fails_closed(self):
        log: list[str] = []
        chain = NeedsUser().wrap(_handler(log))

        response = await chain(None, RequestContext())

        assert response.status_code == 401
        assert json.loads(response.body)["error"]["code"] == "UNAUTHORIZED"
        assert log == []

    @pytest.mark.asyncio
    async def test_present_user_passes(self):
        log: list[str] = []
        chain = NeedsUser().wrap(_handler(log))
        response = await chain(None, RequestContext(user_id="admin"))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_other_missing_attribute_is_wiring_error(self):
        chain = NeedsUploads().wrap(_handler([]))
        with pytest.raises(RuntimeError, match="uploads"):
            await chain(None, RequestContext())


class TestPipeline:
    @pytest.mark.asyncio
    async def test_disabled_middleware_skipped(self):
        log: list[str] = []
        pipeline = (
            MiddlewarePipeline()
            .add(TrackingMiddleware("first", log))
            .add(TrackingMiddleware("second", log), enabled=False)
            .add(TrackingMiddleware("third", log))
        )

        await pipeline.build(_handler(log))(None, RequestContext())
        assert log == ["req:first", "req:third", "handler", "resp:third", "resp:first"]

    @pytest.mark.asyncio
    async def test_toggle_at_runtime(self):
        log: list[str] = []
        pipeline = MiddlewarePipeline().add(TrackingMiddleware("first", log))

        pipeline.set_enabled("first", False)
        assert pipeline.active == []
        pipeline.set_enabled("first", True)
        assert [mw.name for mw in pipeline.active] == ["first"]

    def test_unknown_name_ignored(self):
        pipeline = MiddlewarePipeline()
        pipeline.set_enabled("missing", False)
        assert pipeline.active == []


class TestRequestContext:
    def test_request_id_generated(self):
        first, second = RequestContext(), RequestContext()
        assert len(first.request_id) == 8
        assert first.request_id != second.request_id

    def test_explicit_request_id_kept(self):
        assert RequestContext(request_id="abc").request_id == "abc"


class TestClientIp:
    def test_peer_address_by_default(self, request_factory):
        request = request_factory(headers={"x-forwarded-for": "9.9.9.9"}, client_host="10.0.0.1")
        assert client_ip(request) == "10.0.0.1"

    def test_forwarded_when_trusted(self, request_factory):
        request = request_factory(headers={"x-forwarded-for": "9.9.9.9, 10.0.0.2"}, client_host="10.0.0.1")
        assert client_ip(request, trust_forwarded=True) == "9.9.9.9"

    def test_trusted_without_header_falls_back(self, request_factory):
        request = request_factory(client_host="10.0.0.1")
        assert client_ip(request, trust_forwarded=True) == "10.0.0.1"


class TestAsEndpoint:
    def test_context_built_per_request(self):
        seen: list[RequestContext] = []

        async def handler(request, context):
            seen.append(context)
            return PlainTextResponse(context.client_ip)

        app = Starlette(routes=[Route("/x", as_endpoint(handler))])
        with StarletteTestClient(app) as client:
            first = client.get("/x", headers={"x-request-id": "spoofed"})
            second = client.get("/x")

        assert first.text == "testclient"
        assert first.headers["x-request-id"] == seen[0].request_id
        assert first.headers["x-request-id"] != "spoofed"
        assert seen[0].request_id != seen[1].request_id
        assert second.status_code == 200
