"""Background job that evicts expired CSRF tokens and idle rate-limit windows.

Expired entries are already rejected on lookup; the sweep only bounds memory.
"""

from __future__ import annotations

import asyncio

import structlog

from folioguard.errors import StoreUnavailableError
from folioguard.store.csrf import CsrfTokenStore
from folioguard.store.rate_limit import RateLimitStore

logger = structlog.get_logger()

# Minimum sweep interval to prevent tight loops (seconds)
_MIN_INTERVAL = 1


async def sweep_once(csrf_store: CsrfTokenStore, rate_store: RateLimitStore) -> tuple[int, int]:
    """Run one sweep over both stores. Returns ``(csrf_removed, windows_removed)``."""
    csrf_removed = await csrf_store.sweep()
    windows_removed = await rate_store.sweep()
    if csrf_removed or windows_removed:
        logger.info("store_sweep_complete", csrf_tokens=csrf_removed, rate_windows=windows_removed)
    return csrf_removed, windows_removed


async def run_store_sweeper(
    csrf_store: CsrfTokenStore,
    rate_store: RateLimitStore,
    interval_seconds: float,
) -> None:
    """Sweep forever until cancelled. Store errors are logged and the loop continues."""
    interval = max(_MIN_INTERVAL, interval_seconds)
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_once(csrf_store, rate_store)
        except StoreUnavailableError as exc:
            logger.warning("store_sweep_failed", error=str(exc))
