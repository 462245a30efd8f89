"""Sliding-window request counters keyed by client identifier and purpose."""

from __future__ import annotations

import abc
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

import structlog

from folioguard.store.locks import LockStripes
from folioguard.store.redis import ClientGetter, store_operation

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_seconds: int
    limit: int


def _seconds_until(oldest: float, window: float, now: float) -> int:
    return max(1, math.ceil(oldest + window - now))


class RateLimitStore(abc.ABC):
    @abc.abstractmethod
    async def check_and_record(
        self, identifier: str, max_requests: int, window_seconds: float
    ) -> RateLimitDecision:
        """Prune, decide, and record the request if it is allowed, as one step per identifier."""

    @abc.abstractmethod
    async def reset(self, identifier: str) -> None:
        ...

    async def sweep(self) -> int:
        return 0


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local sliding window.

    Timestamps are kept per identifier in arrival order, so pruning pops from
    the left and the oldest surviving request is always ``window[0]``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, stripes: int = 64) -> None:
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}
        self._locks = LockStripes(stripes)
        self._longest_window = 0.0

    def __len__(self) -> int:
        return len(self._windows)

    async def check_and_record(
        self, identifier: str, max_requests: int, window_seconds: float
    ) -> RateLimitDecision:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._longest_window = max(self._longest_window, float(window_seconds))

        with self._locks.for_key(identifier):
            now = self._clock()
            window = self._windows.setdefault(identifier, deque())
            cutoff = now - window_seconds
            while window and window[0] <= cutoff:
                window.popleft()

            if len(window) >= max_requests:
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_seconds=_seconds_until(window[0], window_seconds, now),
                    limit=max_requests,
                )

            window.append(now)
            return RateLimitDecision(
                allowed=True,
                remaining=max_requests - len(window),
                reset_seconds=_seconds_until(window[0], window_seconds, now),
                limit=max_requests,
            )

    async def reset(self, identifier: str) -> None:
        with self._locks.for_key(identifier):
            self._windows.pop(identifier, None)

    async def sweep(self) -> int:
        """Evict records whose every timestamp is older than the longest window seen."""
        now = self._clock()
        cutoff = now - self._longest_window
        removed = 0
        for identifier in list(self._windows):
            with self._locks.for_key(identifier):
                window = self._windows.get(identifier)
                if window is not None and (not window or window[-1] <= cutoff):
                    del self._windows[identifier]
                    removed += 1
        if removed:
            logger.debug("rate_limit_records_swept", removed=removed, remaining=len(self._windows))
        return removed


_KEY_PREFIX = "ratelimit"

# Atomic Lua script: cleanup + count + conditional add + oldest score in one
# operation, so concurrent checks for the same key cannot both pass the count.
# Returns [count_after, was_added (0 or 1), oldest_score]
_RATE_LIMIT_LUA = """
local key = KEYS[1]
local window_start = tonumber(ARGV[1])
local now = tonumber(ARGV[2])
local max_requests = tonumber(ARGV[3])
local member = ARGV[4]
local ttl = tonumber(ARGV[5])

redis.call('ZREMRANGEBYSCORE', key, '-inf', window_start)

local count = redis.call('ZCARD', key)
local added = 0
if count < max_requests then
    redis.call('ZADD', key, now, member)
    redis.call('EXPIRE', key, ttl)
    count = count + 1
    added = 1
end

local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = now
if oldest[2] then
    oldest_score = tonumber(oldest[2])
end
return {count, added, tostring(oldest_score)}
"""


class RedisRateLimitStore(RateLimitStore):
    """Sorted-set sliding window shared across workers. Fails closed."""

    def __init__(self, get_client: ClientGetter) -> None:
        self._get_client = get_client

    async def check_and_record(
        self, identifier: str, max_requests: int, window_seconds: float
    ) -> RateLimitDecision:
        now = time.time()
        key = f"{_KEY_PREFIX}:{identifier}"
        async with store_operation(self._get_client, "rate_limit", "check_and_record") as client:
            result = await client.eval(
                _RATE_LIMIT_LUA,
                1,
                key,
                str(now - window_seconds),
                str(now),
                str(max_requests),
                f"{now}:{uuid4().hex[:8]}",
                str(int(window_seconds) + 1),
            )

        count, added, oldest = int(result[0]), int(result[1]), float(result[2])
        return RateLimitDecision(
            allowed=bool(added),
            remaining=max(0, max_requests - count) if added else 0,
            reset_seconds=_seconds_until(oldest, window_seconds, now),
            limit=max_requests,
        )

    async def reset(self, identifier: str) -> None:
        async with store_operation(self._get_client, "rate_limit", "reset") as client:
            await client.delete(f"{_KEY_PREFIX}:{identifier}")
