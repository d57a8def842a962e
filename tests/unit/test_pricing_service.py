"""
Unit tests for PricingService.

Covers the per-item pipeline (seed, limit, write-if-moved), manual
updates, quotes, trade recording, admin operations and daily statistics.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from npc_market.core.constants import ItemOutcome, QuoteSide, ReadStatus, TradeDirection
from npc_market.core.exceptions import (
    InactiveItemError, InvalidPriceError, ItemNotFoundError, StoreUnavailableError,
)
from npc_market.core.types import CycleReport, Item, MarketPressureRecord, PriceRecord
from npc_market.engine.pricing_service import PricingService
from npc_market.engine.scheduler import PriceRecomputationScheduler
from npc_market.providers.presence import CachePresenceProvider
from npc_market.providers.server_config import CacheServerConfigProvider
from npc_market.storage.memory_store import InMemoryCacheStore


WHEAT = "minecraft:wheat"


class BucketOutageStore(InMemoryCacheStore):
    """Store that cannot read trade buckets but serves everything else."""

    async def hgetall(self, key):
        if key.startswith("trades_10min:"):
            raise StoreUnavailableError("bucket shard down", key=key)
        return await super().hgetall(key)


async def hot_demand(service, clock, item_id=WHEAT):
    """Current bucket 50, previous bucket 190: demand pressure 0.25."""
    now = clock()
    await service.volume_window.record_trade(item_id, TradeDirection.BUY, 50, 1.0, now=now)
    await service.volume_window.record_trade(
        item_id, TradeDirection.BUY, 190, 1.0, now=now - timedelta(minutes=10)
    )


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
async def wheat(catalog):
    return await catalog.get_item(WHEAT)


@pytest.fixture
async def half_full(go_online):
    """Fifty players online: population factor 1.0."""
    return await go_online(50, minutes_ago=5)


# ── Pipeline ─────────────────────────────────────────────────────────

class TestRecomputeItem:

    async def test_missing_record_is_seeded_at_base(self, service, wheat):
        factors = await service.correction.cycle_factors()
        result = await service.recompute_item(wheat, factors)

        assert result.outcome == ItemOutcome.SEEDED
        assert result.new_price == Decimal("100.00")
        record = await service.current_price(WHEAT)
        assert record.current_price == Decimal("100.00")
        assert record.base_price == Decimal("100")

    async def test_no_trades_leaves_price_unchanged(self, service, wheat, store):
        factors = await service.correction.cycle_factors()
        await service.recompute_item(wheat, factors)

        result = await service.recompute_item(wheat, factors)
        assert result.outcome == ItemOutcome.UNCHANGED
        assert result.new_price == Decimal("100.00")
        assert await service.stored_pressure(WHEAT) is None

    async def test_demand_moves_price_within_swing_limit(self, service, wheat, clock, half_full):
        await hot_demand(service, clock)
        factors = await service.correction.cycle_factors()
        assert factors.population == pytest.approx(1.0)
        await service.recompute_item(wheat, factors)

        result = await service.recompute_item(wheat, factors)

        assert result.outcome == ItemOutcome.UPDATED
        assert result.old_price == Decimal("100.00")
        assert result.new_price == Decimal("110.00")
        assert (await service.current_price(WHEAT)).current_price == Decimal("110.00")

        stored = await service.stored_pressure(WHEAT)
        assert stored.demand == pytest.approx(0.25)
        assert stored.online_player_count == 50

    async def test_converges_to_candidate_then_settles(self, service, wheat, clock, half_full):
        await hot_demand(service, clock)
        factors = await service.correction.cycle_factors()
        await service.recompute_item(wheat, factors)

        prices = []
        for _ in range(3):
            prices.append((await service.recompute_item(wheat, factors)).new_price)
        assert prices == [Decimal("110.00"), Decimal("121.00"), Decimal("125.00")]

        settled = await service.recompute_item(wheat, factors)
        assert settled.outcome == ItemOutcome.UNCHANGED
        assert settled.new_price == Decimal("125.00")

    async def test_malformed_record_fails_the_item_only(self, service, wheat, store):
        await store.set("price:minecraft:wheat", "not json")
        factors = await service.correction.cycle_factors()

        result = await service.recompute_item(wheat, factors)
        assert result.outcome == ItemOutcome.FAILED
        assert result.error

    async def test_store_down_fails_the_item(self, service, wheat, store):
        factors = await service.correction.cycle_factors()
        store.set_available(False)

        result = await service.recompute_item(wheat, factors, cycle_id="c1")
        assert result.outcome == ItemOutcome.FAILED

    async def test_unreadable_volume_window_skips_the_item(self, catalog, wheat, clock):
        store = BucketOutageStore(clock=clock)
        service = PricingService(
            store=store,
            catalog=catalog,
            presence=CachePresenceProvider(store),
            server_config=CacheServerConfigProvider(store),
            clock=clock,
        )
        await service.price_book.set_price(PriceRecord(
            item_id=WHEAT,
            current_price=Decimal("125.00"),
            base_price=Decimal("100"),
            last_updated=clock(),
        ))
        factors = await service.correction.cycle_factors()

        result = await service.recompute_item(wheat, factors)

        assert result.outcome == ItemOutcome.FAILED
        assert result.pressure.status == ReadStatus.UNAVAILABLE
        assert (await service.current_price(WHEAT)).current_price == Decimal("125.00")
        assert await service.stored_pressure(WHEAT) is None

    async def test_stored_pressure_keeps_its_status(self, service, clock):
        await service.price_book.set_pressure(MarketPressureRecord(
            item_id=WHEAT,
            demand=0.0,
            supply=0.0,
            online_player_count=0,
            timestamp=clock(),
            status=ReadStatus.NO_SIGNAL,
        ))
        stored = await service.stored_pressure(WHEAT)
        assert stored.status == ReadStatus.NO_SIGNAL


class TestForceUpdate:

    async def test_unknown_item(self, service):
        with pytest.raises(ItemNotFoundError):
            await service.force_update("minecraft:bedrock")

    async def test_inactive_item(self, service):
        with pytest.raises(InactiveItemError):
            await service.force_update("minecraft:golden_apple")

    async def test_runs_the_pipeline(self, service, clock, half_full):
        assert (await service.force_update(WHEAT)).outcome == ItemOutcome.SEEDED
        await hot_demand(service, clock)
        result = await service.force_update(WHEAT)
        assert result.outcome == ItemOutcome.UPDATED
        assert result.new_price == Decimal("110.00")

    async def test_racing_a_cycle_is_last_write_wins(self, service, clock, half_full, monkeypatch):
        await service.force_update(WHEAT)
        await hot_demand(service, clock)

        # Both writers read the 100.00 record before either writes
        both_read = asyncio.Event()
        readers = []
        original = service.price_book.get_price

        async def get_price(item_id):
            record = await original(item_id)
            if item_id == WHEAT:
                readers.append(record.current_price)
                if len(readers) == 2:
                    both_read.set()
                await both_read.wait()
            return record

        monkeypatch.setattr(service.price_book, "get_price", get_price)
        scheduler = PriceRecomputationScheduler(service, startup_delay_seconds=0, retry_delay_seconds=0)

        manual, report = await asyncio.gather(service.force_update(WHEAT), scheduler.run_cycle())

        assert readers == [Decimal("100.00"), Decimal("100.00")]
        assert manual.outcome == ItemOutcome.UPDATED
        assert report.updated == 1
        # Two 10% steps were applied but only one survives
        assert (await service.current_price(WHEAT)).current_price == Decimal("110.00")


# ── Read side ────────────────────────────────────────────────────────

class TestQuotes:

    async def test_buy_and_sell_quotes_without_record(self, service):
        assert await service.quote(WHEAT, QuoteSide.BUY) == Decimal("105.00")
        assert await service.quote(WHEAT, QuoteSide.SELL) == Decimal("95.00")
        assert await service.quote(WHEAT) == Decimal("100.00")

    async def test_quote_inactive_item(self, service):
        with pytest.raises(InactiveItemError):
            await service.quote("minecraft:golden_apple", QuoteSide.BUY)

    async def test_explain_reports_limiting(self, service, clock, half_full):
        await service.force_update(WHEAT)
        await hot_demand(service, clock)

        detail = await service.explain(WHEAT)

        assert detail.current_price == Decimal("100.00")
        assert detail.demand_pressure == pytest.approx(0.25)
        assert detail.population_factor == pytest.approx(1.0)
        assert detail.time_factor == 1.0
        assert detail.candidate_price == Decimal("125.00")
        assert detail.final_price == Decimal("110.00")
        assert detail.was_limited
        # nothing written
        assert (await service.current_price(WHEAT)).current_price == Decimal("100.00")

    async def test_predict_projects_along_pressure(self, service, clock):
        await hot_demand(service, clock)

        prediction = await service.predict(WHEAT)

        assert prediction.current_price == Decimal("100")
        assert prediction.short_term_price == Decimal("101.25")
        assert prediction.medium_term_price == Decimal("103.75")
        assert prediction.long_term_price == Decimal("107.50")
        assert prediction.confidence == pytest.approx(0.75)

    async def test_predict_confidence_floor(self, service, clock):
        await hot_demand(service, clock)
        await service.volume_window.record_trade(
            WHEAT, TradeDirection.SELL, 10, 1.0, now=clock() - timedelta(minutes=30)
        )
        prediction = await service.predict(WHEAT)
        # net 1.25
        assert prediction.confidence == pytest.approx(0.3)


# ── Trading path ─────────────────────────────────────────────────────

class TestRecordTrade:

    async def test_trade_is_weighted(self, service, clock, go_online):
        # One veteran on an empty evening server: 1.0 × 1.0 × 2.0
        await go_online(1, minutes_ago=150)
        assert await service.record_trade(WHEAT, TradeDirection.BUY, 5, player_id="player-0")

        bucket = await service.volume_window.get_bucket(WHEAT, clock())
        assert bucket.buy == 5
        assert bucket.weighted_buy == pytest.approx(10.0)

    async def test_anonymous_trade_gets_minimum_session_weight(self, service, clock, go_online):
        await go_online(50)
        await service.record_trade(WHEAT, TradeDirection.SELL, 10)

        bucket = await service.volume_window.get_bucket(WHEAT, clock())
        assert bucket.weighted_sell == pytest.approx(3.0)

    async def test_store_down_does_not_raise(self, service, store):
        store.set_available(False)
        assert await service.record_trade(WHEAT, TradeDirection.BUY, 1) is False

    async def test_invalid_quantity(self, service):
        with pytest.raises(ValueError):
            await service.record_trade(WHEAT, TradeDirection.BUY, 0)


# ── Admin ────────────────────────────────────────────────────────────

class TestAdmin:

    async def test_base_price_cut_clamps_current(self, service):
        await service.force_update(WHEAT)
        record = await service.set_base_price(WHEAT, Decimal("20"))

        assert record.base_price == Decimal("20")
        assert record.current_price == Decimal("72.00")
        assert (await service.catalog.get_item(WHEAT)).base_price == Decimal("20")

    async def test_base_price_without_record(self, service):
        record = await service.set_base_price(WHEAT, Decimal("80"))
        assert record.current_price == Decimal("80.00")

    async def test_base_price_must_be_positive(self, service):
        with pytest.raises(InvalidPriceError):
            await service.set_base_price(WHEAT, Decimal("0"))

    async def test_base_price_unknown_item(self, service):
        with pytest.raises(ItemNotFoundError):
            await service.set_base_price("minecraft:bedrock", Decimal("5"))

    async def test_activate_seeds_price(self, service):
        record = await service.activate_item(Item(item_id="minecraft:golden_apple", base_price=Decimal("250")))

        assert record.current_price == Decimal("250.00")
        assert (await service.catalog.get_item("minecraft:golden_apple")).active

    async def test_activate_does_not_mutate_argument(self, service):
        item = Item(item_id="minecraft:golden_apple", base_price=Decimal("250"), active=False)
        await service.activate_item(item)

        assert not item.active
        assert (await service.catalog.get_item("minecraft:golden_apple")).active

    async def test_activate_keeps_existing_price(self, service):
        await service.force_update(WHEAT)
        await service.set_base_price(WHEAT, Decimal("20"))
        await service.deactivate_item(WHEAT)

        record = await service.activate_item(Item(item_id=WHEAT, base_price=Decimal("20")))
        assert record.current_price == Decimal("72.00")

    async def test_deactivate_keeps_price_record(self, service):
        await service.force_update(WHEAT)
        item = await service.deactivate_item(WHEAT)

        assert not item.active
        assert WHEAT not in [i.item_id for i in await service.catalog.active_items()]
        assert await service.current_price(WHEAT) is not None


# ── Statistics ───────────────────────────────────────────────────────

class TestStats:

    def report(self, clock, **kwargs):
        return CycleReport(cycle_id="abc123", started_at=clock(), finished_at=clock(), **kwargs)

    async def test_counters_accumulate(self, service, clock):
        await service.record_cycle_stats(self.report(clock, updated=3, failed=1, success=True))
        await service.record_cycle_stats(self.report(clock, updated=2, success=False))

        stats = await service.stats()
        assert stats['cycles'] == 2
        assert stats['failed_cycles'] == 1
        assert stats['updated_items'] == 5
        assert stats['failed_items'] == 1
        assert stats['last_update']['cycle_id'] == "abc123"
        assert stats['last_update']['success'] is False

    async def test_counters_expire_after_two_days(self, service, store, clock):
        await service.record_cycle_stats(self.report(clock, success=True))
        assert await store.ttl("update_stats:20240110") == 2 * 24 * 3600

    async def test_empty_day(self, service):
        stats = await service.stats()
        assert stats['cycles'] == 0
        assert stats['last_update'] is None

    async def test_store_down_is_not_raised(self, service, store, clock):
        store.set_available(False)
        await service.record_cycle_stats(self.report(clock, success=True))
