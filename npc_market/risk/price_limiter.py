"""
Price Limiter - Final gate between a candidate price and the published price.

Limits (applied in order):
1. Swing clamp: within ±10% of the current price
2. Absolute band: within [0.4 × base, 3.6 × base], the nominal 50%-300%
   band widened by 20% on each side
3. Absolute minimum of 1.00
4. Round to 0.01 (banker's rounding)

The limiter never raises. An invalid candidate (NaN, infinite, negative)
or an arithmetic failure yields the current price, rounded and floored at
the minimum.
"""

from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_EVEN
from typing import Optional, Tuple

from ..core.constants import (
    MAX_PRICE_CHANGE_PER_CYCLE,
    MIN_PRICE_RATIO,
    MAX_PRICE_RATIO,
    BAND_FLOOR_WIDENING,
    BAND_CEILING_WIDENING,
    MINIMUM_PRICE,
    PRICE_QUANTUM,
)
from ..monitoring.logger import get_logger


class PriceLimiter:
    """
    Clamp candidate prices against per-cycle swing and absolute band.
    """

    def __init__(
        self,
        max_change_per_cycle: Decimal = MAX_PRICE_CHANGE_PER_CYCLE,
        min_price_ratio: Decimal = MIN_PRICE_RATIO,
        max_price_ratio: Decimal = MAX_PRICE_RATIO,
        minimum_price: Decimal = MINIMUM_PRICE
    ):
        """
        Initialize price limiter.

        Args:
            max_change_per_cycle: Maximum relative move per cycle
            min_price_ratio: Nominal floor as a fraction of base
            max_price_ratio: Nominal ceiling as a fraction of base
            minimum_price: Absolute minimum price
        """
        self.max_change = Decimal(str(max_change_per_cycle))
        self.floor_ratio = Decimal(str(min_price_ratio)) * BAND_FLOOR_WIDENING
        self.ceiling_ratio = Decimal(str(max_price_ratio)) * BAND_CEILING_WIDENING
        self.minimum_price = Decimal(str(minimum_price))
        self.logger = get_logger(__name__)

    @staticmethod
    def round_price(price: Decimal) -> Decimal:
        """Round to currency precision with banker's rounding."""
        return price.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_EVEN)

    def bounds(self, base_price: Decimal) -> Tuple[Decimal, Decimal]:
        """
        Absolute band for a base price, rounded inward to whole cents.

        Returns:
            (floor, ceiling)
        """
        floor = (base_price * self.floor_ratio).quantize(PRICE_QUANTUM, rounding=ROUND_CEILING)
        ceiling = (base_price * self.ceiling_ratio).quantize(PRICE_QUANTUM, rounding=ROUND_FLOOR)
        return floor, ceiling

    def swing_bounds(self, current_price: Decimal) -> Tuple[Decimal, Decimal]:
        """Lowest and highest price reachable from current_price in one cycle."""
        return (
            current_price * (Decimal("1") - self.max_change),
            current_price * (Decimal("1") + self.max_change),
        )

    def fallback(self, current_price: Decimal, base_price: Optional[Decimal] = None) -> Decimal:
        """
        Last known good price: current rounded and floored at the minimum.

        A current price that is itself unusable falls back to base.
        """
        for price in (current_price, base_price):
            if isinstance(price, Decimal) and price.is_finite() and price > 0:
                return max(self.minimum_price, self.round_price(price))
        return self.minimum_price

    def apply(
        self,
        item_id: str,
        candidate_price: Decimal,
        current_price: Decimal,
        base_price: Decimal
    ) -> Decimal:
        """
        Limit a candidate price.

        Args:
            item_id: Item being priced (for logging)
            candidate_price: Unlimited price from the pressure engine
            current_price: Currently published price
            base_price: Admin-defined reference price

        Returns:
            Final price, always finite and >= minimum_price
        """
        try:
            if not candidate_price.is_finite() or candidate_price < 0:
                self.logger.warning(
                    "Invalid candidate price, keeping current",
                    item_id=item_id,
                    candidate=candidate_price,
                    current=current_price
                )
                return self.fallback(current_price, base_price)

            # 1. Swing clamp
            swing_low, swing_high = self.swing_bounds(current_price)
            price = max(swing_low, min(swing_high, candidate_price))

            # 2. Absolute band
            floor, ceiling = self.bounds(base_price)
            price = max(floor, min(ceiling, price))

            # 3. Absolute minimum
            price = max(self.minimum_price, price)

            # 4. Currency precision
            final = self.round_price(price)

        except (ArithmeticError, AttributeError, TypeError, ValueError) as e:
            self.logger.error(
                "Price limiting failed, keeping current",
                item_id=item_id,
                candidate=candidate_price,
                current=current_price,
                error=str(e)
            )
            return self.fallback(current_price, base_price)

        if final != self.round_price(candidate_price):
            self.logger.debug(
                "Candidate price limited",
                item_id=item_id,
                candidate=candidate_price,
                final=final
            )
        return final

    def is_within_limits(
        self,
        price: Decimal,
        base_price: Decimal,
        previous_price: Optional[Decimal] = None
    ) -> bool:
        """
        Check a published price against the band and, if given, the swing.
        """
        floor, ceiling = self.bounds(base_price)
        if price < max(self.minimum_price, floor):
            return False
        if price > max(self.minimum_price, ceiling):
            return False
        if previous_price is not None:
            low, high = self.swing_bounds(previous_price)
            # Rounding may move the price by half a cent past the swing edge
            slack = PRICE_QUANTUM / 2
            if price < low - slack or price > high + slack:
                return False
        return True
