"""
In-memory cache store.

Implements the full CacheStore contract, including TTL expiry, against a
plain dict. Time comes from an injectable clock so tests can move it
forward; availability can be switched off to simulate an unreachable cache.
"""

import fnmatch
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.exceptions import StoreDataError, StoreUnavailableError
from .cache_store import CacheStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCacheStore(CacheStore):
    """
    Dict-backed store with lazy expiry.

    Values are kept as str (strings), dict (hashes) or set (sets), matching
    the Redis types the production store uses.
    """

    def __init__(self, key_prefix: str = "", clock: Callable[[], datetime] = _utcnow):
        super().__init__(key_prefix)
        self.clock = clock
        self.available = True
        self._data: Dict[str, Any] = {}
        self._expiry: Dict[str, datetime] = {}

    def set_available(self, available: bool) -> None:
        """Simulate the cache going down or coming back."""
        self.available = available

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError("In-memory store marked unavailable")

    def _live(self, full_key: str) -> bool:
        """Drop key if expired; return whether it still exists."""
        deadline = self._expiry.get(full_key)
        if deadline is not None and self.clock() >= deadline:
            self._data.pop(full_key, None)
            self._expiry.pop(full_key, None)
        return full_key in self._data

    def _typed(self, full_key: str, kind: type, create: bool = False):
        if not self._live(full_key):
            if not create:
                return None
            self._data[full_key] = kind()
        value = self._data[full_key]
        if not isinstance(value, kind):
            raise StoreDataError("Wrong value type for key", key=self._strip(full_key))
        return value

    # ── connectivity ────────────────────────────────────────────────

    async def ping(self) -> bool:
        self._check()
        return True

    async def close(self) -> None:
        return None

    # ── strings ─────────────────────────────────────────────────────

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self._typed(self._full(key), str)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        self._check()
        full = self._full(key)
        self._data[full] = str(value)
        if ttl_seconds is not None:
            self._expiry[full] = self.clock() + timedelta(seconds=ttl_seconds)
        else:
            self._expiry.pop(full, None)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            full = self._full(key)
            if self._live(full):
                removed += 1
            self._data.pop(full, None)
            self._expiry.pop(full, None)
        return removed

    async def exists(self, key: str) -> bool:
        self._check()
        return self._live(self._full(key))

    # ── hashes ──────────────────────────────────────────────────────

    async def hgetall(self, key: str) -> Dict[str, str]:
        self._check()
        value = self._typed(self._full(key), dict)
        return dict(value) if value else {}

    async def hset(self, key: str, mapping: Dict[str, str]) -> None:
        self._check()
        value = self._typed(self._full(key), dict, create=True)
        value.update({k: str(v) for k, v in mapping.items()})

    async def hincrby(self, key: str, field: str, amount: int) -> int:
        self._check()
        value = self._typed(self._full(key), dict, create=True)
        new = int(value.get(field, 0)) + int(amount)
        value[field] = str(new)
        return new

    async def hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        self._check()
        value = self._typed(self._full(key), dict, create=True)
        new = float(value.get(field, 0.0)) + float(amount)
        value[field] = repr(new)
        return new

    # ── expiry ──────────────────────────────────────────────────────

    async def expire(self, key: str, seconds: int, only_if_unset: bool = False) -> bool:
        self._check()
        full = self._full(key)
        if not self._live(full):
            return False
        if only_if_unset and full in self._expiry:
            return False
        self._expiry[full] = self.clock() + timedelta(seconds=seconds)
        return True

    async def ttl(self, key: str) -> int:
        self._check()
        full = self._full(key)
        if not self._live(full):
            return -2
        deadline = self._expiry.get(full)
        if deadline is None:
            return -1
        return int((deadline - self.clock()).total_seconds())

    # ── sets ────────────────────────────────────────────────────────

    async def sadd(self, key: str, *members: str) -> int:
        self._check()
        value = self._typed(self._full(key), set, create=True)
        before = len(value)
        value.update(str(m) for m in members)
        return len(value) - before

    async def srem(self, key: str, *members: str) -> int:
        self._check()
        value = self._typed(self._full(key), set)
        if not value:
            return 0
        before = len(value)
        value.difference_update(str(m) for m in members)
        return before - len(value)

    async def scard(self, key: str) -> int:
        self._check()
        value = self._typed(self._full(key), set)
        return len(value) if value else 0

    async def smembers(self, key: str) -> Set[str]:
        self._check()
        value = self._typed(self._full(key), set)
        return set(value) if value else set()

    # ── iteration ───────────────────────────────────────────────────

    async def scan_keys(self, pattern: str) -> List[str]:
        self._check()
        full_pattern = self._full(pattern)
        return [
            self._strip(k) for k in list(self._data)
            if self._live(k) and fnmatch.fnmatchcase(k, full_pattern)
        ]
