"""
Market Pressure Engine - Demand and supply pressure from trade volume.

Pressure compares the last 10 minutes of weighted volume, projected to an
hourly rate (× 6), against the trailing hour:

    pressure = (current_bucket × 6 / trailing_hour) − 1,  clipped to [−1, 2]

> 0 means the last 10 minutes traded faster than the hourly average,
< 0 slower. With no trailing volume there is no signal and the pressure is
exactly 0.0. Demand uses weighted buys, supply weighted sells; net pressure
is demand − supply.

Candidate price:
    candidate = base × (1 + net × population × time_of_day)
    buy quotes × 1.05, sell quotes × 0.95 (before limiting)
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from ..core.constants import (
    QuoteSide, ReadStatus,
    MIN_PRESSURE, MAX_PRESSURE,
    BUCKETS_PER_HOUR,
    BUY_MARKUP, SELL_MARKDOWN,
)
from ..core.exceptions import StoreError
from ..core.types import MarketPressureRecord, ReadResult
from ..monitoring.logger import get_logger
from ..providers.presence import PlayerPresenceProvider
from .volume_window import VolumeWindowStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_pressure(current_weighted: float, trailing_weighted: float) -> float:
    """
    Pressure of one side of the market.

    Args:
        current_weighted: Weighted volume of the current bucket
        trailing_weighted: Weighted volume of the trailing hour

    Returns:
        Pressure in [-1.0, 2.0]; 0.0 when there is no trailing volume
    """
    if trailing_weighted <= 0.0:
        return 0.0
    pressure = (current_weighted * BUCKETS_PER_HOUR) / trailing_weighted - 1.0
    return max(MIN_PRESSURE, min(MAX_PRESSURE, pressure))


def candidate_price(
    base_price: Decimal,
    net_pressure: float,
    population_factor: float,
    time_factor: float,
    side: QuoteSide = QuoteSide.MID
) -> Decimal:
    """
    Unlimited price implied by net pressure and correction factors.

    The float multiplier enters decimal arithmetic through its string form
    so no binary floating point noise reaches the price.
    """
    multiplier = 1.0 + net_pressure * population_factor * time_factor
    price = base_price * Decimal(str(multiplier))
    if side == QuoteSide.BUY:
        price *= BUY_MARKUP
    elif side == QuoteSide.SELL:
        price *= SELL_MARKDOWN
    return price


class MarketPressureEngine:
    """
    Derives pressure records from the volume window.

    A failed read never raises: the affected pressure is 0.0 and the record
    is marked UNAVAILABLE so the cycle can carry on with other items.
    """

    def __init__(
        self,
        volume_window: VolumeWindowStore,
        presence: Optional[PlayerPresenceProvider] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize engine.

        Args:
            volume_window: Source of trade volumes
            presence: Source of the online player count recorded with each
                pressure record (optional)
            clock: Source of "now" (UTC)
        """
        self.volume_window = volume_window
        self.presence = presence
        self.clock = clock
        self.logger = get_logger(__name__)

    compute_pressure = staticmethod(compute_pressure)
    candidate_price = staticmethod(candidate_price)

    async def demand_pressure(self, item_id: str, now: Optional[datetime] = None) -> ReadResult[float]:
        """Demand pressure from weighted buy volume."""
        window = await self.volume_window.window(item_id, now or self.clock())
        current, trailing = window.value
        return self._side_result(window, compute_pressure(current.weighted_buy, trailing.weighted_buy))

    async def supply_pressure(self, item_id: str, now: Optional[datetime] = None) -> ReadResult[float]:
        """Supply pressure from weighted sell volume."""
        window = await self.volume_window.window(item_id, now or self.clock())
        current, trailing = window.value
        return self._side_result(window, compute_pressure(current.weighted_sell, trailing.weighted_sell))

    @staticmethod
    def _side_result(window: ReadResult, pressure: float) -> ReadResult[float]:
        if window.is_unavailable:
            return ReadResult.unavailable(0.0, window.error or "volume window unavailable")
        if window.status == ReadStatus.NO_SIGNAL:
            return ReadResult.no_signal(0.0)
        return ReadResult.ok(pressure)

    async def _online_count(self) -> int:
        if self.presence is None:
            return 0
        try:
            return await self.presence.online_count()
        except StoreError as e:
            self.logger.warning("Online count unavailable for pressure record", error=str(e))
            return 0

    async def market_pressure(
        self,
        item_id: str,
        now: Optional[datetime] = None,
        online_count: Optional[int] = None
    ) -> MarketPressureRecord:
        """
        Demand, supply and net pressure of an item.

        Both sides are derived from one read of the volume window.

        Args:
            item_id: Item to evaluate
            now: Evaluation time (defaults to clock)
            online_count: Player count to record; read from presence if None

        Returns:
            MarketPressureRecord (status UNAVAILABLE if the window could not
            be read, in which case both pressures are 0.0)
        """
        now = now or self.clock()
        window = await self.volume_window.window(item_id, now)
        current, trailing = window.value

        if window.is_unavailable:
            self.logger.error(
                "Pressure defaulted to zero, volume window unavailable",
                item_id=item_id,
                error=window.error
            )
            demand = supply = 0.0
        else:
            demand = compute_pressure(current.weighted_buy, trailing.weighted_buy)
            supply = compute_pressure(current.weighted_sell, trailing.weighted_sell)

        if online_count is None:
            online_count = await self._online_count()

        record = MarketPressureRecord(
            item_id=item_id,
            demand=demand,
            supply=supply,
            online_player_count=online_count,
            timestamp=now,
            status=window.status,
        )
        self.logger.debug(
            "Market pressure",
            item_id=item_id,
            demand=f"{demand:.3f}",
            supply=f"{supply:.3f}",
            net=f"{record.net:.3f}",
            current_buy=current.weighted_buy,
            hourly_buy=trailing.weighted_buy
        )
        return record
