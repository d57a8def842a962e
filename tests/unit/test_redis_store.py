"""
Unit tests for RedisCacheStore against a fake client.

No Redis server is needed; the fake records calls and raises redis-py
exceptions on demand.
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from npc_market.core.exceptions import StoreDataError, StoreUnavailableError
from npc_market.storage.redis_store import RedisCacheStore


class FakeRedis:

    def __init__(self, error=None):
        self.error = error
        self.calls = []
        self.closed = False
        self.keys = ["hc2:trades_10min:a:202401102000", "hc2:trades_10min:b:202401101800"]

    async def _reply(self, name, value, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if self.error:
            raise self.error
        return value

    def ping(self):
        return self._reply("ping", True)

    def get(self, key):
        return self._reply("get", "42", key)

    def set(self, key, value, ex=None):
        return self._reply("set", True, key, value, ex=ex)

    def hgetall(self, key):
        return self._reply("hgetall", None, key)

    def hincrbyfloat(self, key, field, amount):
        return self._reply("hincrbyfloat", "3.5", key, field, amount)

    def expire(self, key, seconds, nx=False):
        return self._reply("expire", 1, key, seconds, nx=nx)

    async def scan_iter(self, match=None, count=None):
        self.calls.append(("scan_iter", (match,), {}))
        for key in self.keys:
            yield key

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake():
    return FakeRedis()


@pytest.fixture
def redis_store(fake):
    return RedisCacheStore(key_prefix="hc2:", client=fake)


class TestCommands:

    async def test_keys_are_prefixed(self, redis_store, fake):
        assert await redis_store.get("price:a") == "42"
        await redis_store.set("pressure:a", "{}", ttl_seconds=900)

        assert fake.calls[0] == ("get", ("hc2:price:a",), {})
        assert fake.calls[1] == ("set", ("hc2:pressure:a", "{}"), {'ex': 900})

    async def test_expire_only_if_unset_uses_nx(self, redis_store, fake):
        assert await redis_store.expire("trades_10min:a:202401102000", 3600, only_if_unset=True)
        assert fake.calls[0][2] == {'nx': True}

    async def test_replies_are_converted(self, redis_store):
        assert await redis_store.hgetall("missing") == {}
        assert await redis_store.hincrbyfloat("h", "weighted_buy", 1.5) == 3.5

    async def test_scan_strips_prefix(self, redis_store, fake):
        found = await redis_store.scan_keys("trades_10min:*")
        assert found == ["trades_10min:a:202401102000", "trades_10min:b:202401101800"]
        assert fake.calls[0] == ("scan_iter", ("hc2:trades_10min:*",), {})

    async def test_close_releases_client(self, redis_store, fake):
        await redis_store.close()
        assert fake.closed


class TestErrorMapping:

    @pytest.mark.parametrize("error", [
        RedisConnectionError("refused"),
        RedisTimeoutError("timed out"),
        OSError("network down"),
    ])
    async def test_connection_errors_mean_unavailable(self, error):
        store = RedisCacheStore(client=FakeRedis(error=error))
        with pytest.raises(StoreUnavailableError):
            await store.ping()

    async def test_response_error_means_bad_data(self):
        store = RedisCacheStore(client=FakeRedis(error=ResponseError("WRONGTYPE")))
        with pytest.raises(StoreDataError):
            await store.get("price:a")
