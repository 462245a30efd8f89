"""Striped locks: per-key mutual exclusion without one lock per key."""

from __future__ import annotations

import threading
import zlib


class LockStripes:
    """A fixed pool of locks addressed by key hash.

    Two operations on the same key always take the same lock; operations on
    different keys only contend when their keys share a stripe.
    """

    def __init__(self, stripes: int = 64) -> None:
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks = [threading.Lock() for _ in range(stripes)]

    def __len__(self) -> int:
        return len(self._locks)

    def for_key(self, key: str) -> threading.Lock:
        return self._locks[zlib.crc32(key.encode("utf-8", "surrogatepass")) % len(self._locks)]
