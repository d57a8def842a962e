"""
Pricing Service - Per-item price pipeline and the operations exposed to the
HTTP layer.

Pipeline for one item (sequential, no locks):
    read price record -> market pressure -> candidate price -> limiter
    -> write price and pressure only if the price moved by more than 0.01

Price writes are plain overwrites. A manual force update racing a scheduled
cycle on the same item is a pair of independent read-modify-write sequences;
whichever writes last wins.
"""

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from ..core.constants import (
    ItemOutcome, QuoteSide, ReadStatus, TradeDirection,
    DEFAULT_SERVER_CAPACITY,
    PRICE_CHANGE_EPSILON,
    PREDICTION_HORIZON_WEIGHTS,
    MIN_PREDICTION_CONFIDENCE,
    STATS_TTL_SECONDS,
)
from ..core.exceptions import (
    EconomySystemError,
    InactiveItemError,
    ItemNotFoundError,
    StoreError,
)
from ..core.types import (
    CorrectionFactors,
    CycleReport,
    Item,
    ItemUpdateResult,
    MarketPressureRecord,
    PriceCalculationDetail,
    PricePrediction,
    PriceRecord,
)
from ..market.correction import CorrectionFactorCalculator
from ..market.pressure import MarketPressureEngine, candidate_price
from ..market.volume_window import VolumeWindowStore
from ..monitoring.logger import get_logger
from ..providers.catalog import CatalogProvider
from ..providers.presence import PlayerPresenceProvider
from ..providers.server_config import ServerConfigProvider
from ..risk.price_limiter import PriceLimiter
from ..storage import keys
from ..storage.cache_store import CacheStore
from ..storage.price_book import PriceBook


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CycleScope:
    """
    Inputs held for the duration of one recomputation cycle.

    The item list and correction factors are captured once when the scope
    opens and are read-only while items are processed.
    """
    cycle_id: str
    started_at: datetime
    items: List[Item] = field(default_factory=list)
    factors: Optional[CorrectionFactors] = None


class PricingService:
    """
    Recomputes and serves NPC shop prices.

    All collaborators share one injected cache store.
    """

    def __init__(
        self,
        store: CacheStore,
        catalog: CatalogProvider,
        presence: PlayerPresenceProvider,
        server_config: ServerConfigProvider,
        limiter: Optional[PriceLimiter] = None,
        timezone_name: str = "UTC",
        default_capacity: int = DEFAULT_SERVER_CAPACITY,
        change_epsilon: Decimal = PRICE_CHANGE_EPSILON,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize pricing service.

        Args:
            store: Shared cache store
            catalog: Item catalog collaborator
            presence: Player presence collaborator
            server_config: Server settings collaborator
            limiter: Price limiter (default limits if None)
            timezone_name: Server timezone for time-of-day weights
            default_capacity: Capacity used when the setting cannot be read
            change_epsilon: Minimum price move that triggers a write
            clock: Source of "now" (UTC)
        """
        self.store = store
        self.catalog = catalog
        self.presence = presence
        self.clock = clock
        self.change_epsilon = Decimal(str(change_epsilon))

        self.price_book = PriceBook(store)
        self.volume_window = VolumeWindowStore(store, clock=clock)
        self.correction = CorrectionFactorCalculator(
            presence,
            server_config,
            timezone_name=timezone_name,
            default_capacity=default_capacity,
            clock=clock
        )
        self.pressure_engine = MarketPressureEngine(self.volume_window, presence, clock=clock)
        self.limiter = limiter or PriceLimiter()

        self.logger = get_logger(__name__)

    # ── Cycle pipeline ──────────────────────────────────────────────────

    @asynccontextmanager
    async def cycle_scope(self, cycle_id: str) -> AsyncIterator[CycleScope]:
        """
        Open a cycle: snapshot the active item set and compute factors once.

        Raises:
            StoreError: If the catalog or cache cannot be read at all
        """
        scope = CycleScope(cycle_id=cycle_id, started_at=self.clock())
        scope.items = await self.catalog.active_items()
        scope.factors = await self.correction.cycle_factors(scope.started_at)
        self.logger.debug("Cycle scope opened", cycle_id=cycle_id, items=len(scope.items))
        try:
            yield scope
        finally:
            scope.items = []
            self.logger.debug("Cycle scope closed", cycle_id=cycle_id)

    async def recompute_item(
        self,
        item: Item,
        factors: CorrectionFactors,
        cycle_id: Optional[str] = None
    ) -> ItemUpdateResult:
        """
        Recompute and, if it moved, republish the price of one item.

        Never raises for storage or data problems; they are reported as a
        FAILED result.

        Args:
            item: Catalog item (its base price is authoritative)
            factors: Correction factors of the current cycle
            cycle_id: Cycle identifier for logging

        Returns:
            ItemUpdateResult
        """
        stage = "read_price"
        try:
            now = self.clock()
            record = await self.price_book.get_price(item.item_id)

            if record is None:
                stage = "seed_price"
                seeded = await self._seed_price(item, now)
                self.logger.info(
                    "Price seeded at base",
                    cycle_id=cycle_id,
                    item_id=item.item_id,
                    price=seeded.current_price
                )
                return ItemUpdateResult(
                    item_id=item.item_id,
                    outcome=ItemOutcome.SEEDED,
                    new_price=seeded.current_price,
                )

            stage = "pressure"
            pressure = await self.pressure_engine.market_pressure(
                item.item_id, now, online_count=factors.online_players
            )
            if pressure.status == ReadStatus.UNAVAILABLE:
                self.logger.warning(
                    "Volume window unavailable, item skipped",
                    cycle_id=cycle_id,
                    item_id=item.item_id
                )
                return ItemUpdateResult(
                    item_id=item.item_id,
                    outcome=ItemOutcome.FAILED,
                    old_price=record.current_price,
                    pressure=pressure,
                    error="volume window unavailable",
                )

            stage = "limit"
            candidate = candidate_price(
                item.base_price, pressure.net, factors.population, factors.time_of_day
            )
            new_price = self.limiter.apply(item.item_id, candidate, record.current_price, item.base_price)

            if abs(new_price - record.current_price) <= self.change_epsilon:
                return ItemUpdateResult(
                    item_id=item.item_id,
                    outcome=ItemOutcome.UNCHANGED,
                    old_price=record.current_price,
                    new_price=record.current_price,
                    pressure=pressure,
                )

            stage = "write"
            await self.price_book.set_price(PriceRecord(
                item_id=item.item_id,
                current_price=new_price,
                base_price=item.base_price,
                last_updated=now,
            ))
            await self.price_book.set_pressure(pressure)

            self.logger.debug(
                "Price updated",
                cycle_id=cycle_id,
                item_id=item.item_id,
                old=record.current_price,
                new=new_price,
                net=f"{pressure.net:.3f}"
            )
            return ItemUpdateResult(
                item_id=item.item_id,
                outcome=ItemOutcome.UPDATED,
                old_price=record.current_price,
                new_price=new_price,
                pressure=pressure,
            )

        except EconomySystemError as e:
            self.logger.error(
                "Item recomputation failed",
                cycle_id=cycle_id,
                item_id=item.item_id,
                stage=stage,
                error=str(e)
            )
            return ItemUpdateResult(item_id=item.item_id, outcome=ItemOutcome.FAILED, error=str(e))

    async def _seed_price(self, item: Item, now: datetime) -> PriceRecord:
        record = PriceRecord(
            item_id=item.item_id,
            current_price=self.limiter.fallback(item.base_price),
            base_price=item.base_price,
            last_updated=now,
        )
        await self.price_book.set_price(record)
        return record

    async def _require_item(self, item_id: str, active: bool = False) -> Item:
        item = await self.catalog.get_item(item_id)
        if item is None:
            raise ItemNotFoundError("Unknown item", item_id=item_id)
        if active and not item.active:
            raise InactiveItemError("Item is not active", item_id=item_id)
        return item

    async def force_update(self, item_id: str) -> ItemUpdateResult:
        """
        Recompute one item now, outside the schedule.

        Raises:
            ItemNotFoundError: If the item is not in the catalog
            InactiveItemError: If the item is deactivated
        """
        item = await self._require_item(item_id, active=True)
        factors = await self.correction.cycle_factors()
        result = await self.recompute_item(item, factors, cycle_id="manual")
        self.logger.info(
            "Forced price update",
            item_id=item_id,
            outcome=result.outcome.value,
            old=result.old_price,
            new=result.new_price
        )
        return result

    # ── Read side ───────────────────────────────────────────────────────

    async def current_price(self, item_id: str) -> Optional[PriceRecord]:
        """Published price record, or None if the item was never priced."""
        return await self.price_book.get_price(item_id)

    async def market_pressure(self, item_id: str) -> MarketPressureRecord:
        """Freshly computed pressure (not persisted)."""
        return await self.pressure_engine.market_pressure(item_id)

    async def stored_pressure(self, item_id: str) -> Optional[MarketPressureRecord]:
        """Pressure persisted by the last price change, if still fresh."""
        return await self.price_book.get_pressure(item_id)

    async def quote(self, item_id: str, side: QuoteSide = QuoteSide.MID) -> Decimal:
        """
        Price a player would trade at right now.

        Buy quotes carry a 5% markup and sell quotes a 5% markdown before
        limiting against the published price.

        Raises:
            ItemNotFoundError: If the item is not in the catalog
            InactiveItemError: If the item is deactivated
            StoreError: If the published price cannot be read
        """
        item = await self._require_item(item_id, active=True)
        record = await self.price_book.get_price(item_id)
        current = record.current_price if record else item.base_price

        pressure = await self.pressure_engine.market_pressure(item_id)
        population = await self.correction.population_factor()
        time_factor = self.correction.time_of_day_weight()

        candidate = candidate_price(item.base_price, pressure.net, population, time_factor, side)
        return self.limiter.apply(item_id, candidate, current, item.base_price)

    async def explain(self, item_id: str) -> PriceCalculationDetail:
        """
        Step-by-step breakdown of the next cycle's computation for an item.

        Nothing is written.
        """
        item = await self._require_item(item_id)
        record = await self.price_book.get_price(item_id)
        current = record.current_price if record else item.base_price

        factors = await self.correction.cycle_factors()
        pressure = await self.pressure_engine.market_pressure(
            item_id, factors.computed_at, online_count=factors.online_players
        )
        candidate = candidate_price(item.base_price, pressure.net, factors.population, factors.time_of_day)
        final = self.limiter.apply(item_id, candidate, current, item.base_price)

        return PriceCalculationDetail(
            item_id=item_id,
            base_price=item.base_price,
            current_price=current,
            demand_pressure=pressure.demand,
            supply_pressure=pressure.supply,
            population_factor=factors.population,
            time_factor=factors.time_of_day,
            candidate_price=candidate,
            final_price=final,
            calculated_at=factors.computed_at,
        )

    async def predict(self, item_id: str) -> PricePrediction:
        """
        Linear projection of the current price along the net pressure.

        Confidence falls as pressure grows, bounded below by 0.3.
        """
        item = await self._require_item(item_id)
        record = await self.price_book.get_price(item_id)
        current = record.current_price if record else item.base_price
        pressure = await self.pressure_engine.market_pressure(item_id)

        short, medium, long_ = (
            self._project(current, pressure.net, weight) for weight in PREDICTION_HORIZON_WEIGHTS
        )
        return PricePrediction(
            item_id=item_id,
            current_price=current,
            short_term_price=short,
            medium_term_price=medium,
            long_term_price=long_,
            confidence=max(MIN_PREDICTION_CONFIDENCE, 1.0 - abs(pressure.net)),
            predicted_at=pressure.timestamp,
        )

    def _project(self, current: Decimal, net: float, weight: float) -> Decimal:
        projected = current * (Decimal("1") + Decimal(str(net * weight)))
        return max(self.limiter.minimum_price, self.limiter.round_price(projected))

    # ── Trading path ────────────────────────────────────────────────────

    async def record_trade(
        self,
        item_id: str,
        direction: TradeDirection,
        quantity: int,
        player_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Record a completed trade in the volume window.

        The trade is weighted by session × time-of-day × population. Storage
        problems are logged and reported as False; the trade itself is never
        failed by this call.

        Raises:
            ValueError: If quantity is not positive
        """
        now = now or self.clock()
        weight = await self.correction.trade_weight(player_id, now)
        return await self.volume_window.record_trade(item_id, direction, quantity, weight, now)

    # ── Admin ───────────────────────────────────────────────────────────

    async def activate_item(self, item: Item) -> PriceRecord:
        """
        Open an item for trading, creating its price record at base if absent.
        """
        item = replace(item, active=True)
        await self.catalog.add_item(item)
        record = await self.price_book.get_price(item.item_id)
        if record is None:
            record = await self._seed_price(item, self.clock())
        self.logger.info("Item activated", item_id=item.item_id, price=record.current_price)
        return record

    async def deactivate_item(self, item_id: str) -> Item:
        """Close an item for trading; its price record is kept."""
        item = await self.catalog.set_active(item_id, False)
        self.logger.info("Item deactivated", item_id=item_id)
        return item

    async def set_base_price(self, item_id: str, base_price: Decimal) -> PriceRecord:
        """
        Change an item's base price.

        The current price is kept but pulled inside the absolute band of the
        new base, so the band invariant holds right after the change.

        Raises:
            ItemNotFoundError: If the item is not in the catalog
            InvalidPriceError: If base_price is not positive
        """
        await self._require_item(item_id)
        item = await self.catalog.set_base_price(item_id, base_price)

        record = await self.price_book.get_price(item_id)
        current = record.current_price if record else item.base_price
        floor, ceiling = self.limiter.bounds(item.base_price)
        clamped = max(self.limiter.minimum_price, max(floor, min(ceiling, current)))

        updated = PriceRecord(
            item_id=item_id,
            current_price=self.limiter.round_price(clamped),
            base_price=item.base_price,
            last_updated=self.clock(),
        )
        await self.price_book.set_price(updated)
        self.logger.info(
            "Base price changed",
            item_id=item_id,
            base=item.base_price,
            current=updated.current_price
        )
        return updated

    # ── Statistics ──────────────────────────────────────────────────────

    async def record_cycle_stats(self, report: CycleReport) -> None:
        """
        Accumulate daily cycle counters and the last-update summary.

        Best-effort: failures are logged, never raised.
        """
        finished = report.finished_at or self.clock()
        stats_key = keys.update_stats_key(finished)
        try:
            await self.store.hincrby(stats_key, 'cycles', 1)
            if not report.success:
                await self.store.hincrby(stats_key, 'failed_cycles', 1)
            await self.store.hincrby(stats_key, 'updated_items', report.updated)
            await self.store.hincrby(stats_key, 'failed_items', report.failed)
            await self.store.expire(stats_key, STATS_TTL_SECONDS, only_if_unset=True)

            await self.store.set(keys.LAST_PRICE_UPDATE, json.dumps({
                'cycle_id': report.cycle_id,
                'timestamp': finished.isoformat(),
                'updated_items': report.updated,
                'failed_items': report.failed,
                'duration_seconds': report.duration_seconds,
                'success': report.success,
            }))
        except StoreError as e:
            self.logger.warning("Cycle statistics not recorded", cycle_id=report.cycle_id, error=str(e))

    async def stats(self, day: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Daily cycle counters and the last cycle summary.

        Raises:
            StoreError: If the cache cannot be read
        """
        day = day or self.clock()
        counters = await self.store.hgetall(keys.update_stats_key(day))
        raw_last = await self.store.get(keys.LAST_PRICE_UPDATE)
        try:
            last = json.loads(raw_last) if raw_last else None
        except json.JSONDecodeError:
            self.logger.warning("Malformed last update summary")
            last = None
        return {
            'cycles': int(counters.get('cycles', 0)),
            'failed_cycles': int(counters.get('failed_cycles', 0)),
            'updated_items': int(counters.get('updated_items', 0)),
            'failed_items': int(counters.get('failed_items', 0)),
            'last_update': last,
        }
