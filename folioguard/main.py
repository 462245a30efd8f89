"""FastAPI application: portfolio API routes behind the security pipeline."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from folioguard import __version__
from folioguard.api.routes import SecurityServices, build_router
from folioguard.config.loader import SecuritySettings, get_settings, register_reload_handler
from folioguard.events import SecurityEventSink, default_sink, get_event_buffer
from folioguard.health import router as health_router
from folioguard.jobs.store_sweeper import run_store_sweeper
from folioguard.logging_config import setup_logging
from folioguard.middleware.auth import IdentityAccessor, bearer_key_accessor
from folioguard.store import redis as redis_store
from folioguard.store.csrf import CsrfTokenStore, InMemoryCsrfTokenStore, RedisCsrfTokenStore
from folioguard.store.rate_limit import InMemoryRateLimitStore, RateLimitStore, RedisRateLimitStore

logger = structlog.get_logger()


def build_stores(settings: SecuritySettings) -> tuple[CsrfTokenStore, RateLimitStore]:
    """CSRF and rate-limit stores for the configured backend.

    Redis stores look the pool up on every call, so they can be built before
    the pool exists and keep failing closed while it is down.
    """
    if settings.store_backend == "redis":
        return (
            RedisCsrfTokenStore(redis_store.get_redis, ttl_seconds=settings.csrf_token_ttl_seconds),
            RedisRateLimitStore(redis_store.get_redis),
        )
    if settings.store_backend != "memory":
        raise ValueError(f"Unknown store backend: {settings.store_backend!r}")
    return (
        InMemoryCsrfTokenStore(
            ttl_seconds=settings.csrf_token_ttl_seconds,
            sweep_interval=settings.store_sweep_interval_seconds,
        ),
        InMemoryRateLimitStore(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    services: SecurityServices = app.state.services
    settings = services.settings

    setup_logging(log_level=settings.log_level, json_format=settings.log_json)
    register_reload_handler()

    if settings.store_backend == "redis":
        # Non-fatal if unavailable: protected routes answer 503 until it is back
        await redis_store.init_redis(settings.redis_url, pool_size=settings.redis_pool_size)

    sweeper = asyncio.create_task(
        run_store_sweeper(services.csrf_store, services.rate_store, settings.store_sweep_interval_seconds)
    )
    logger.info(
        "app_started",
        environment=settings.environment,
        store=settings.store_backend,
        header_preset=settings.header_preset,
    )

    yield

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await redis_store.close_redis()
    logger.info("app_stopped")


def create_app(
    settings: SecuritySettings | None = None,
    *,
    csrf_store: CsrfTokenStore | None = None,
    rate_store: RateLimitStore | None = None,
    sink: SecurityEventSink | None = None,
    identity: IdentityAccessor | None = None,
) -> FastAPI:
    """Build the app. Every collaborator can be injected (tests, alternative backends)."""
    settings = settings or get_settings()
    if csrf_store is None or rate_store is None:
        default_csrf, default_rate = build_stores(settings)
        if csrf_store is None:
            csrf_store = default_csrf
        if rate_store is None:
            rate_store = default_rate

    services = SecurityServices(
        settings=settings,
        csrf_store=csrf_store,
        rate_store=rate_store,
        sink=sink if sink is not None else default_sink(),
        event_buffer=get_event_buffer(settings.security_event_buffer_size),
        identity=identity or bearer_key_accessor(settings.admin_api_key),
    )

    app = FastAPI(title="folioguard", version=__version__, lifespan=lifespan)
    app.state.services = services
    app.include_router(health_router)
    app.include_router(build_router(services))
    return app


app = create_app()
