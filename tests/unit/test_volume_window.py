"""
Unit tests for the trade volume window.

Covers bucket alignment, the set-once expiry, trailing-hour aggregation and
purging of stale buckets.
"""

from datetime import datetime, timedelta, timezone

import pytest

from npc_market.core.constants import ReadStatus, TradeDirection
from npc_market.market.volume_window import VolumeWindowStore
from npc_market.storage import keys


ITEM = "minecraft:wheat"


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def window(store, clock):
    return VolumeWindowStore(store, clock=clock)


# ── Key schema ───────────────────────────────────────────────────────

class TestBucketKeys:

    def test_bucket_start_floors_to_ten_minutes(self):
        ts = datetime(2024, 1, 10, 20, 9, 59, tzinfo=timezone.utc)
        assert keys.bucket_start(ts) == datetime(2024, 1, 10, 20, 0, tzinfo=timezone.utc)

    def test_bucket_start_converts_to_utc(self):
        kst = timezone(timedelta(hours=9))
        ts = datetime(2024, 1, 11, 5, 15, tzinfo=kst)
        assert keys.bucket_start(ts) == datetime(2024, 1, 10, 20, 10, tzinfo=timezone.utc)

    def test_trade_bucket_key_format(self):
        ts = datetime(2024, 1, 10, 20, 5, tzinfo=timezone.utc)
        assert keys.trade_bucket_key(ITEM, ts) == "trades_10min:minecraft:wheat:202401102000"

    def test_parse_key_with_colon_in_item_id(self):
        parsed = keys.parse_trade_bucket_key("trades_10min:minecraft:wheat:202401102000")
        assert parsed == (ITEM, datetime(2024, 1, 10, 20, 0, tzinfo=timezone.utc))

    @pytest.mark.parametrize("key", [
        "price:minecraft:wheat",
        "trades_10min:202401102000",
        "trades_10min:minecraft:wheat:notastamp",
    ])
    def test_parse_rejects_other_keys(self, key):
        assert keys.parse_trade_bucket_key(key) is None


# ── Recording ────────────────────────────────────────────────────────

class TestRecordTrade:

    async def test_increments_raw_and_weighted_counters(self, window, store):
        assert await window.record_trade(ITEM, TradeDirection.BUY, 10, 0.5)
        assert await window.record_trade(ITEM, TradeDirection.BUY, 4, 1.0)
        assert await window.record_trade(ITEM, TradeDirection.SELL, 3, 2.0)

        data = await store.hgetall("trades_10min:minecraft:wheat:202401102000")
        assert int(data['buy']) == 14
        assert float(data['weighted_buy']) == pytest.approx(9.0)
        assert int(data['sell']) == 3
        assert float(data['weighted_sell']) == pytest.approx(6.0)

    async def test_expiry_is_set_once_and_not_renewed(self, window, store, clock):
        key = "trades_10min:minecraft:wheat:202401102000"
        await window.record_trade(ITEM, TradeDirection.BUY, 1, 1.0)
        assert await store.ttl(key) == 3600

        clock.advance(minutes=3)
        await window.record_trade(ITEM, TradeDirection.BUY, 1, 1.0)
        assert await store.ttl(key) == 3600 - 180

    async def test_bucket_expires_after_an_hour(self, window, clock):
        await window.record_trade(ITEM, TradeDirection.BUY, 5, 1.0)
        bucket_time = clock()
        clock.advance(minutes=61)
        assert await window.get_bucket(ITEM, bucket_time) is None

    @pytest.mark.parametrize("quantity,weight", [(0, 1.0), (-5, 1.0), (5, -0.1)])
    async def test_rejects_invalid_input(self, window, quantity, weight):
        with pytest.raises(ValueError):
            await window.record_trade(ITEM, TradeDirection.BUY, quantity, weight)

    async def test_unavailable_store_never_fails_the_trade(self, window, store):
        store.set_available(False)
        assert await window.record_trade(ITEM, TradeDirection.BUY, 5, 1.0) is False


# ── Reads ────────────────────────────────────────────────────────────

class TestWindowReads:

    async def test_current_bucket_without_trades_is_zero(self, window):
        result = await window.current_bucket(ITEM)
        assert result.status == ReadStatus.NO_SIGNAL
        assert result.value.weighted_buy == 0.0
        assert result.value.weighted_sell == 0.0

    async def test_trailing_hour_sums_six_buckets(self, window, clock):
        now = clock()
        await window.record_trade(ITEM, TradeDirection.BUY, 10, 1.0, now=now)
        await window.record_trade(ITEM, TradeDirection.BUY, 20, 1.0, now=now - timedelta(minutes=10))
        await window.record_trade(ITEM, TradeDirection.SELL, 7, 1.0, now=now - timedelta(minutes=50))
        # 19:00 bucket is the seventh and falls outside the window
        await window.record_trade(ITEM, TradeDirection.BUY, 500, 1.0, now=now - timedelta(minutes=60))

        current = await window.current_bucket(ITEM)
        trailing = await window.trailing_hour(ITEM)

        assert current.status == ReadStatus.OK
        assert current.value.weighted_buy == pytest.approx(10.0)
        assert trailing.value.weighted_buy == pytest.approx(30.0)
        assert trailing.value.weighted_sell == pytest.approx(7.0)
        assert trailing.value.total == 37

    async def test_missing_buckets_count_as_zero(self, window, clock):
        await window.record_trade(ITEM, TradeDirection.BUY, 6, 1.0, now=clock() - timedelta(minutes=30))

        result = await window.window(ITEM)
        current, trailing = result.value
        assert result.status == ReadStatus.OK
        assert current.weighted_buy == 0.0
        assert trailing.weighted_buy == pytest.approx(6.0)

    async def test_unavailable_store_is_reported(self, window, store):
        store.set_available(False)
        result = await window.window(ITEM)
        assert result.is_unavailable
        assert result.error
        current, trailing = result.value
        assert current.weighted_buy == 0.0
        assert trailing.weighted_sell == 0.0


# ── Purge ────────────────────────────────────────────────────────────

class TestPurgeExpired:

    async def test_purges_only_buckets_older_than_an_hour(self, window, store):
        # Stale bucket whose expiry was never applied
        await store.hset("trades_10min:minecraft:wheat:202401101800", {'buy': '3'})
        await store.hset("trades_10min:minecraft:wheat:202401101850", {'buy': '1'})
        await store.hset("trades_10min:minecraft:wheat:202401101900", {'buy': '1'})
        await window.record_trade(ITEM, TradeDirection.BUY, 2, 1.0)

        # now 20:05, cutoff is the 19:00 bucket
        assert await window.purge_expired() == 2
        assert not await store.exists("trades_10min:minecraft:wheat:202401101800")
        assert not await store.exists("trades_10min:minecraft:wheat:202401101850")
        assert await store.exists("trades_10min:minecraft:wheat:202401101900")
        assert await store.exists("trades_10min:minecraft:wheat:202401102000")

    async def test_repeated_purge_is_a_noop(self, window, store):
        await store.hset("trades_10min:minecraft:wheat:202401101800", {'buy': '3'})
        assert await window.purge_expired() == 1
        assert await window.purge_expired() == 0

    async def test_unrelated_keys_are_untouched(self, window, store):
        await store.set("price:minecraft:wheat", "{}")
        assert await window.purge_expired() == 0
        assert await store.exists("price:minecraft:wheat")
