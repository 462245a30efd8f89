"""Shared test fixtures."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from folioguard.config.loader import SecuritySettings
from folioguard.events import MemoryEventSink, reset_event_buffer
from folioguard.middleware.security_headers import reset_presets_cache
from folioguard.store.csrf import InMemoryCsrfTokenStore
from folioguard.store.rate_limit import InMemoryRateLimitStore

ADMIN_KEY = "test-admin-key"


@pytest.fixture(autouse=True)
def _mock_settings(monkeypatch):
    """Provide default settings for all tests."""
    monkeypatch.setenv("FOLIO_ENVIRONMENT", "production")
    monkeypatch.setenv("FOLIO_STORE_BACKEND", "memory")
    monkeypatch.setenv("FOLIO_ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setenv("FOLIO_LOG_JSON", "false")
    monkeypatch.setenv("FOLIO_LOG_LEVEL", "debug")

    # Reset cached singletons
    import folioguard.config.loader as loader

    loader._settings = None
    reset_event_buffer()
    reset_presets_cache()
    yield
    loader._settings = None
    reset_event_buffer()


@pytest.fixture
def csrf_store():
    return InMemoryCsrfTokenStore()


@pytest.fixture
def rate_store():
    return InMemoryRateLimitStore()


@pytest.fixture
def event_sink():
    return MemoryEventSink()


@pytest.fixture
def make_client(csrf_store, rate_store, event_sink):
    """Build a TestClient around a fresh app; keyword arguments override settings."""
    from folioguard.main import create_app

    clients: list[TestClient] = []

    def _make(use_default_sink: bool = False, **overrides) -> TestClient:
        settings = SecuritySettings(**overrides)
        sink = None if use_default_sink else event_sink
        app = create_app(settings, csrf_store=csrf_store, rate_store=rate_store, sink=sink)
        client = TestClient(app, raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {ADMIN_KEY}"}


def make_request(
    method: str = "GET",
    path: str = "/api/test",
    headers: dict[str, str] | None = None,
    body: bytes = b"",
    query_string: bytes = b"",
    client_host: str = "127.0.0.1",
) -> Request:
    """Build a minimal Starlette Request with an in-memory body."""
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query_string,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "root_path": "",
        "server": ("localhost", 8000),
        "client": (client_host, 12345),
    }
    sent = False

    async def receive():
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


@pytest.fixture
def request_factory():
    return make_request
