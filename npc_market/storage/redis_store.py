"""
Redis cache store.

Production implementation of CacheStore on top of redis.asyncio.
Driver errors are translated into the store exceptions so no caller
depends on redis-py directly.
"""

from typing import Awaitable, Dict, List, Optional, Set, TypeVar

import redis.asyncio as redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    ResponseError,
    TimeoutError as RedisTimeoutError,
)

from ..core.exceptions import StoreDataError, StoreUnavailableError
from ..monitoring.logger import get_logger
from .cache_store import CacheStore


T = TypeVar("T")

logger = get_logger(__name__)


class RedisCacheStore(CacheStore):
    """
    CacheStore backed by a Redis server.

    The client is created lazily from the URL on first use and decodes
    responses to str.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "",
        socket_timeout: float = 5.0,
        client: Optional["redis.Redis"] = None
    ):
        """
        Initialize Redis store.

        Args:
            url: Redis connection URL
            key_prefix: Namespace prepended to every key
            socket_timeout: Per-command timeout in seconds
            client: Pre-built client (mainly for tests)
        """
        super().__init__(key_prefix)
        self.url = url
        self.socket_timeout = socket_timeout
        self._client = client

    @property
    def client(self) -> "redis.Redis":
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
        return self._client

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except ResponseError as e:
            raise StoreDataError("Redis rejected command", operation=operation, error=str(e)) from e
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise StoreUnavailableError("Redis unreachable", operation=operation, error=str(e)) from e
        except RedisError as e:
            raise StoreUnavailableError("Redis error", operation=operation, error=str(e)) from e

    # ── connectivity ────────────────────────────────────────────────

    async def ping(self) -> bool:
        return bool(await self._call("ping", self.client.ping()))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from Redis")

    # ── strings ─────────────────────────────────────────────────────

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", self.client.get(self._full(key)))

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        result = await self._call("set", self.client.set(self._full(key), value, ex=ttl_seconds))
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._call("delete", self.client.delete(*(self._full(k) for k in keys))))

    async def exists(self, key: str) -> bool:
        return bool(await self._call("exists", self.client.exists(self._full(key))))

    # ── hashes ──────────────────────────────────────────────────────

    async def hgetall(self, key: str) -> Dict[str, str]:
        return await self._call("hgetall", self.client.hgetall(self._full(key))) or {}

    async def hset(self, key: str, mapping: Dict[str, str]) -> None:
        await self._call("hset", self.client.hset(self._full(key), mapping=mapping))

    async def hincrby(self, key: str, field: str, amount: int) -> int:
        return int(await self._call("hincrby", self.client.hincrby(self._full(key), field, amount)))

    async def hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        return float(await self._call(
            "hincrbyfloat", self.client.hincrbyfloat(self._full(key), field, amount)
        ))

    # ── expiry ──────────────────────────────────────────────────────

    async def expire(self, key: str, seconds: int, only_if_unset: bool = False) -> bool:
        return bool(await self._call(
            "expire", self.client.expire(self._full(key), seconds, nx=only_if_unset)
        ))

    async def ttl(self, key: str) -> int:
        return int(await self._call("ttl", self.client.ttl(self._full(key))))

    # ── sets ────────────────────────────────────────────────────────

    async def sadd(self, key: str, *members: str) -> int:
        return int(await self._call("sadd", self.client.sadd(self._full(key), *members)))

    async def srem(self, key: str, *members: str) -> int:
        return int(await self._call("srem", self.client.srem(self._full(key), *members)))

    async def scard(self, key: str) -> int:
        return int(await self._call("scard", self.client.scard(self._full(key))))

    async def smembers(self, key: str) -> Set[str]:
        return set(await self._call("smembers", self.client.smembers(self._full(key))))

    # ── iteration ───────────────────────────────────────────────────

    async def scan_keys(self, pattern: str) -> List[str]:
        async def _scan() -> List[str]:
            return [self._strip(k) async for k in self.client.scan_iter(match=self._full(pattern), count=500)]

        return await self._call("scan", _scan())
