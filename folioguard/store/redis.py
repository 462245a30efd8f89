"""Shared Redis pool for the CSRF and rate-limit stores.

The pool is process-wide and optional: with ``store_backend=memory`` it is
never created. Stores never talk to the pool directly. They go through
:func:`store_operation`, which turns a missing pool or any Redis failure
into :class:`StoreUnavailableError` so the security middleware can fail
closed with a 503.
"""

from __future__ import annotations

import asyncio
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import redis.asyncio as aioredis
import structlog

from folioguard.errors import StoreUnavailableError

logger = structlog.get_logger()

ClientGetter = Callable[[], Optional[aioredis.Redis]]

_CONNECT_ATTEMPTS = 5
_FIRST_BACKOFF_SECONDS = 0.5
_CONNECT_TIMEOUT_SECONDS = 5

# redis:// and rediss:// URLs with a password in the userinfo
_URL_CREDENTIALS_RE = re.compile(r"(rediss?://[^:/@]*:)[^@]+(@)")

_pool: aioredis.Redis | None = None


def _redact_url(url: str) -> str:
    return _URL_CREDENTIALS_RE.sub(r"\1***\2", url)


def _backoff(attempt: int) -> float:
    return _FIRST_BACKOFF_SECONDS * 2 ** (attempt - 1)


async def init_redis(url: str, pool_size: int = 10) -> aioredis.Redis | None:
    """Open the pool, retrying with exponential backoff.

    Returns ``None`` when Redis stays unreachable. The app still starts; every
    store call then raises :class:`StoreUnavailableError` and ``/ready``
    reports the backend as down.
    """
    global _pool
    safe_url = _redact_url(url)
    for attempt in range(1, _CONNECT_ATTEMPTS + 1):
        client = aioredis.from_url(
            url,
            max_connections=pool_size,
            decode_responses=True,
            socket_connect_timeout=_CONNECT_TIMEOUT_SECONDS,
        )
        try:
            await client.ping()
        except (aioredis.ConnectionError, OSError) as exc:
            if attempt == _CONNECT_ATTEMPTS:
                logger.error("store_redis_unreachable", url=safe_url, attempts=attempt, error=str(exc))
                _pool = None
                return None
            delay = _backoff(attempt)
            logger.warning("store_redis_retry", url=safe_url, attempt=attempt, delay=delay, error=str(exc))
            await asyncio.sleep(delay)
            continue
        _pool = client
        logger.info("store_redis_connected", url=safe_url, pool_size=pool_size)
        return _pool
    return None


def get_redis() -> aioredis.Redis | None:
    return _pool


def require_client(get_client: ClientGetter = get_redis) -> aioredis.Redis:
    client = get_client()
    if client is None:
        raise StoreUnavailableError("redis unavailable")
    return client


@asynccontextmanager
async def store_operation(
    get_client: ClientGetter, store: str, operation: str
) -> AsyncIterator[aioredis.Redis]:
    """Yield a live client for one store call.

    Usage::

        async with store_operation(self._get_client, "csrf", "issue") as client:
            await client.set(key, value, ex=ttl)
    """
    client = require_client(get_client)
    try:
        yield client
    except (aioredis.RedisError, OSError) as exc:
        logger.error("store_redis_error", store=store, operation=operation, error=str(exc))
        raise StoreUnavailableError(str(exc)) from exc


async def ping() -> bool:
    """Readiness check: True only when the pool exists and answers."""
    if _pool is None:
        return False
    try:
        return bool(await _pool.ping())
    except (aioredis.RedisError, OSError):
        return False


async def close_redis() -> None:
    global _pool
    if _pool is None:
        return
    await _pool.aclose()
    _pool = None
    logger.info("store_redis_closed")
