"""
Cache Store - Key-value store interface shared by every component.

The store is injected into each component rather than reached through a
process-wide singleton, so the whole engine can run against the in-memory
implementation in tests and against Redis in production.

Contract:
- All methods are coroutines.
- Keys passed in are unprefixed; the store owns the namespace prefix.
- Any failure to reach the backend raises StoreUnavailableError.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set


class CacheStore(ABC):
    """Abstract async key-value store with hashes, sets and TTLs."""

    def __init__(self, key_prefix: str = ""):
        self.key_prefix = key_prefix

    def _full(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _strip(self, full_key: str) -> str:
        if self.key_prefix and full_key.startswith(self.key_prefix):
            return full_key[len(self.key_prefix):]
        return full_key

    # ── connectivity ────────────────────────────────────────────────

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend answers; raise StoreUnavailableError otherwise."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend connections."""

    # ── strings ─────────────────────────────────────────────────────

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the string value of key, or None."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """Set key to value, optionally expiring after ttl_seconds."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys; return how many existed."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return True if key exists."""

    # ── hashes ──────────────────────────────────────────────────────

    @abstractmethod
    async def hgetall(self, key: str) -> Dict[str, str]:
        """Return all fields of a hash (empty dict if missing)."""

    @abstractmethod
    async def hset(self, key: str, mapping: Dict[str, str]) -> None:
        """Set several hash fields."""

    @abstractmethod
    async def hincrby(self, key: str, field: str, amount: int) -> int:
        """Increment an integer hash field, creating it if missing."""

    @abstractmethod
    async def hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        """Increment a float hash field, creating it if missing."""

    # ── expiry ──────────────────────────────────────────────────────

    @abstractmethod
    async def expire(self, key: str, seconds: int, only_if_unset: bool = False) -> bool:
        """
        Set a TTL on key.

        Args:
            key: Key to expire
            seconds: Time to live
            only_if_unset: Leave an existing TTL untouched (Redis EXPIRE NX)

        Returns:
            True if the TTL was set
        """

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -1 if no expiry, -2 if missing."""

    # ── sets ────────────────────────────────────────────────────────

    @abstractmethod
    async def sadd(self, key: str, *members: str) -> int:
        """Add members to a set."""

    @abstractmethod
    async def srem(self, key: str, *members: str) -> int:
        """Remove members from a set."""

    @abstractmethod
    async def scard(self, key: str) -> int:
        """Number of members of a set."""

    @abstractmethod
    async def smembers(self, key: str) -> Set[str]:
        """All members of a set."""

    # ── iteration ───────────────────────────────────────────────────

    @abstractmethod
    async def scan_keys(self, pattern: str) -> List[str]:
        """Return unprefixed keys matching a glob pattern."""
