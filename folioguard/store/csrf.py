"""CSRF token registry: expiring, single-use tokens bound to a session identity.

State machine per token: issued -> valid -> consumed | expired. Both end
states are final. ``consume`` is the check-then-delete that must be atomic:
when several requests present the same token at once, at most one succeeds.
"""

from __future__ import annotations

import abc
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from folioguard.store.locks import LockStripes
from folioguard.store.redis import ClientGetter, store_operation

logger = structlog.get_logger()

# 32 bytes = 256 bits of entropy, 64 hex chars
_TOKEN_BYTES = 32
DEFAULT_TTL_SECONDS = 60 * 60


def generate_token() -> str:
    return secrets.token_hex(_TOKEN_BYTES)


def _same_identity(expected: str, supplied: str) -> bool:
    return hmac.compare_digest(expected.encode(), supplied.encode())


@dataclass(frozen=True)
class CsrfToken:
    token: str
    session_id: str
    issued_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CsrfTokenStore(abc.ABC):
    """Storage contract shared by the in-memory and Redis registries."""

    ttl_seconds: int = DEFAULT_TTL_SECONDS

    @abc.abstractmethod
    async def issue(self, session_id: str) -> str:
        """Create a token owned by ``session_id`` and return it."""

    @abc.abstractmethod
    async def validate(self, token: str, session_id: str) -> bool:
        """Read-only check: exists, unexpired, owned by ``session_id``."""

    @abc.abstractmethod
    async def consume(self, token: str, session_id: str) -> bool:
        """Validate and invalidate in one indivisible step."""

    async def sweep(self) -> int:
        """Drop expired tokens. Returns how many were removed."""
        return 0


class InMemoryCsrfTokenStore(CsrfTokenStore):
    """Process-local registry keyed by token, with per-key striped locking."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 60.0,
        stripes: int = 64,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()
        self._tokens: dict[str, CsrfToken] = {}
        self._locks = LockStripes(stripes)

    def __len__(self) -> int:
        return len(self._tokens)

    async def issue(self, session_id: str) -> str:
        if not session_id:
            raise ValueError("session_id is required to issue a CSRF token")
        now = self._clock()
        token = generate_token()
        with self._locks.for_key(token):
            self._tokens[token] = CsrfToken(token, session_id, now, now + self.ttl_seconds)
        if now - self._last_sweep >= self._sweep_interval:
            await self.sweep()
        return token

    def _lookup(self, token: str, session_id: str, now: float) -> CsrfToken | None:
        """Caller holds the stripe lock for ``token``."""
        entry = self._tokens.get(token)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._tokens[token]
            return None
        if not _same_identity(entry.session_id, session_id):
            return None
        return entry

    async def validate(self, token: str, session_id: str) -> bool:
        if not token or not session_id:
            return False
        with self._locks.for_key(token):
            return self._lookup(token, session_id, self._clock()) is not None

    async def consume(self, token: str, session_id: str) -> bool:
        if not token or not session_id:
            return False
        with self._locks.for_key(token):
            entry = self._lookup(token, session_id, self._clock())
            if entry is None:
                return False
            del self._tokens[token]
        return True

    async def sweep(self) -> int:
        now = self._clock()
        self._last_sweep = now
        removed = 0
        for token, entry in list(self._tokens.items()):
            if not entry.is_expired(now):
                continue
            with self._locks.for_key(token):
                current = self._tokens.get(token)
                if current is not None and current.is_expired(now):
                    del self._tokens[token]
                    removed += 1
        if removed:
            logger.debug("csrf_tokens_swept", removed=removed, remaining=len(self._tokens))
        return removed


_KEY_PREFIX = "csrf"

# Atomic compare-and-delete: the token is removed only if it belongs to the
# presented session. Expiry is enforced by the key TTL.
# Returns 1 if consumed, 0 otherwise.
_CONSUME_LUA = """
local raw = redis.call('GET', KEYS[1])
if not raw then
    return 0
end
local data = cjson.decode(raw)
if data['session_id'] ~= ARGV[1] then
    return 0
end
redis.call('DEL', KEYS[1])
return 1
"""


class RedisCsrfTokenStore(CsrfTokenStore):
    """Shared registry for multi-process deployments. Any Redis failure raises
    StoreUnavailableError so the CSRF middleware can reject the request."""

    def __init__(self, get_client: ClientGetter, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._get_client = get_client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(token: str) -> str:
        return f"{_KEY_PREFIX}:{token}"

    async def issue(self, session_id: str) -> str:
        if not session_id:
            raise ValueError("session_id is required to issue a CSRF token")
        token = generate_token()
        now = time.time()
        payload = json.dumps(
            {"session_id": session_id, "issued_at": now, "expires_at": now + self.ttl_seconds}
        )
        async with store_operation(self._get_client, "csrf", "issue") as client:
            await client.set(self._key(token), payload, ex=self.ttl_seconds)
        return token

    async def validate(self, token: str, session_id: str) -> bool:
        if not token or not session_id:
            return False
        async with store_operation(self._get_client, "csrf", "validate") as client:
            raw = await client.get(self._key(token))
        if not raw:
            return False
        try:
            data = json.loads(raw)
        except ValueError:
            return False
        if time.time() > float(data.get("expires_at", 0)):
            return False
        return _same_identity(str(data.get("session_id", "")), session_id)

    async def consume(self, token: str, session_id: str) -> bool:
        if not token or not session_id:
            return False
        async with store_operation(self._get_client, "csrf", "consume") as client:
            result = await client.eval(_CONSUME_LUA, 1, self._key(token), session_id)
        return int(result) == 1
