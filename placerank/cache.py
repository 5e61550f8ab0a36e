"""Thread-safe TTL cache keyed by stable content hashes."""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections.abc import Callable
from typing import Any

_MISSING = object()


def stable_key(*parts: Any) -> str:
    """Return a deterministic hash for *parts*.

    Parts are serialised as canonical JSON (sorted keys, ``str`` fallback
    for non-JSON values such as datetimes), so equal inputs always hash to
    the same key regardless of dict ordering or process.
    """
    payload = json.dumps(parts, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


class TTLCache:
    """Small in-memory cache whose entries expire after a fixed lifetime.

    Owned by whichever component needs memoization and passed in through its
    constructor, so each engine (and each test) gets an independent cache.

    Expired entries are dropped when read, and at most once per default
    lifetime :meth:`set` sweeps out every expired entry, so keys that are
    never read again do not accumulate.

    Args:
        ttl_seconds: Default lifetime of an entry.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, tuple[float, Any]] = {}
        self._next_sweep = clock() + ttl_seconds

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            self._entries[key] = (now + ttl, value)

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl_seconds: float | None = None,
    ) -> Any:
        """Return the cached value for *key*, computing and storing it on a miss.

        *compute* runs outside the lock; two concurrent misses may both
        compute, and the later result wins.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = compute()
        self.set(key, value, ttl_seconds)
        return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[key]

    def invalidate_where(self, predicate: Callable[[str, Any], bool]) -> None:
        """Drop every entry for which ``predicate(key, value)`` is true."""
        with self._lock:
            for key in [k for k, (_, v) in self._entries.items() if predicate(k, v)]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self._ttl
