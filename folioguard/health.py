"""Health and readiness endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from folioguard.config.loader import get_settings
from folioguard.store import redis as redis_store

logger = structlog.get_logger()
router = APIRouter()


async def _store_status(request: Request) -> tuple[str, bool]:
    """Backend name and whether it can answer. The memory backend always can."""
    services = getattr(request.app.state, "services", None)
    settings = services.settings if services is not None else get_settings()
    backend = settings.store_backend
    if backend != "redis":
        return backend, True
    return backend, await redis_store.ping()


@router.get("/health")
async def health(request: Request):
    """Liveness plus the state of the CSRF/rate-limit backing store."""
    backend, store_ok = await _store_status(request)
    return {
        "status": "healthy" if store_ok else "degraded",
        "app": "up",
        "store": backend,
        "store_status": "up" if store_ok else "down",
    }


@router.get("/ready")
async def ready(request: Request):
    """200 only when the backing store answers; otherwise every protected route fails closed."""
    backend, store_ok = await _store_status(request)
    if store_ok:
        return {"status": "ready"}
    logger.warning("readiness_failed", store=backend)
    return JSONResponse(
        status_code=503,
        content={"status": "not_ready", "store": backend, "store_status": "down"},
    )
