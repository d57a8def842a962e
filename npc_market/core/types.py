"""Core data types for the NPC market.

This module defines all fundamental data structures used throughout the
pricing engine using dataclasses. All types follow strict rules:
- Decimal for all monetary values (never float)
- float only for dimensionless pressures, factors and weighted volumes
- datetime for all timestamps (UTC-aware)
- Validation in __post_init__ where needed
- Immutable types are frozen
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Generic, List, Optional, TypeVar

from .constants import (
    ItemOutcome, ReadStatus,
    MIN_PRICE_RATIO, MAX_PRICE_RATIO,
    BAND_FLOOR_WIDENING, BAND_CEILING_WIDENING,
)
from .exceptions import InvalidPriceError, StoreDataError


T = TypeVar("T")


def _to_decimal(value: Any, name: str) -> Decimal:
    """Convert a number or numeric string to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidPriceError(f"{name} is not a number", value=value) from e


def _ensure_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


# ============================================================================
# Catalog Types
# ============================================================================

@dataclass
class Item:
    """
    Shop item as seen by the pricing engine.

    Attributes:
        item_id: Catalog key (e.g. "minecraft:wheat")
        base_price: Admin-defined reference price
        active: Inactive items are skipped by recomputation, never deleted
        display_name: Optional human readable name
    """
    item_id: str
    base_price: Decimal
    active: bool = True
    display_name: Optional[str] = None

    def __post_init__(self):
        """Validate base price."""
        self.base_price = _to_decimal(self.base_price, "base_price")
        if not self.base_price.is_finite() or self.base_price <= 0:
            raise InvalidPriceError(
                "Base price must be positive",
                item_id=self.item_id,
                base_price=self.base_price
            )

    @property
    def min_price(self) -> Decimal:
        """Nominal floor: 50% of base."""
        return self.base_price * MIN_PRICE_RATIO

    @property
    def max_price(self) -> Decimal:
        """Nominal ceiling: 300% of base."""
        return self.base_price * MAX_PRICE_RATIO

    @property
    def hard_floor(self) -> Decimal:
        """Widened floor enforced by the limiter: 40% of base."""
        return self.min_price * BAND_FLOOR_WIDENING

    @property
    def hard_ceiling(self) -> Decimal:
        """Widened ceiling enforced by the limiter: 360% of base."""
        return self.max_price * BAND_CEILING_WIDENING


@dataclass
class PriceRecord:
    """Current published price of an item, stored under price:{item_id}."""
    item_id: str
    current_price: Decimal
    base_price: Decimal
    last_updated: datetime

    def __post_init__(self):
        self.current_price = _to_decimal(self.current_price, "current_price")
        self.base_price = _to_decimal(self.base_price, "base_price")
        self.last_updated = _ensure_utc(self.last_updated)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'current': str(self.current_price),
            'base': str(self.base_price),
            'updated': self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, item_id: str, data: Dict[str, Any]) -> "PriceRecord":
        try:
            return cls(
                item_id=item_id,
                current_price=data['current'],
                base_price=data['base'],
                last_updated=datetime.fromisoformat(data['updated']),
            )
        except (KeyError, ValueError, InvalidPriceError) as e:
            raise StoreDataError("Malformed price record", item_id=item_id, error=str(e)) from e


# ============================================================================
# Volume Types
# ============================================================================

@dataclass(frozen=True)
class VolumeAggregate:
    """Raw and weighted buy/sell volume over one or more buckets."""
    weighted_buy: float = 0.0
    weighted_sell: float = 0.0
    buy: int = 0
    sell: int = 0

    def __add__(self, other: "VolumeAggregate") -> "VolumeAggregate":
        return VolumeAggregate(
            weighted_buy=self.weighted_buy + other.weighted_buy,
            weighted_sell=self.weighted_sell + other.weighted_sell,
            buy=self.buy + other.buy,
            sell=self.sell + other.sell,
        )

    @property
    def total(self) -> int:
        return self.buy + self.sell


@dataclass(frozen=True)
class TradeVolumeBucket:
    """
    Trade counters for one item over one 10-minute slice.

    Stored as a hash under trades_10min:{item_id}:{yyyyMMddHHmm}.
    """
    item_id: str
    bucket_start: datetime
    buy: int = 0
    sell: int = 0
    weighted_buy: float = 0.0
    weighted_sell: float = 0.0

    @classmethod
    def from_hash(cls, item_id: str, bucket_start: datetime, data: Dict[str, str]) -> "TradeVolumeBucket":
        try:
            return cls(
                item_id=item_id,
                bucket_start=bucket_start,
                buy=int(float(data.get('buy', 0))),
                sell=int(float(data.get('sell', 0))),
                weighted_buy=float(data.get('weighted_buy', 0.0)),
                weighted_sell=float(data.get('weighted_sell', 0.0)),
            )
        except (TypeError, ValueError) as e:
            raise StoreDataError("Malformed trade bucket", item_id=item_id, error=str(e)) from e

    def aggregate(self) -> VolumeAggregate:
        return VolumeAggregate(
            weighted_buy=self.weighted_buy,
            weighted_sell=self.weighted_sell,
            buy=self.buy,
            sell=self.sell,
        )


@dataclass(frozen=True)
class ReadResult(Generic[T]):
    """
    Value read from the cache together with how it was obtained.

    Lets callers tell "no signal" apart from "storage unavailable"
    while still getting a usable default in both cases.
    """
    value: T
    status: ReadStatus = ReadStatus.OK
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "ReadResult[T]":
        return cls(value=value, status=ReadStatus.OK)

    @classmethod
    def no_signal(cls, value: T) -> "ReadResult[T]":
        return cls(value=value, status=ReadStatus.NO_SIGNAL)

    @classmethod
    def unavailable(cls, value: T, error: str) -> "ReadResult[T]":
        return cls(value=value, status=ReadStatus.UNAVAILABLE, error=error)

    @property
    def is_unavailable(self) -> bool:
        return self.status == ReadStatus.UNAVAILABLE


# ============================================================================
# Market Types
# ============================================================================

@dataclass
class MarketPressureRecord:
    """
    Demand/supply pressure of an item at a point in time.

    Persisted under pressure:{item_id} with a 15-minute freshness window.
    status is UNAVAILABLE when a cache read failed and the pressures were
    defaulted to zero.
    """
    item_id: str
    demand: float
    supply: float
    online_player_count: int
    timestamp: datetime
    status: ReadStatus = ReadStatus.OK

    def __post_init__(self):
        self.timestamp = _ensure_utc(self.timestamp)

    @property
    def net(self) -> float:
        return self.demand - self.supply

    def to_dict(self) -> Dict[str, Any]:
        return {
            'demand': self.demand,
            'supply': self.supply,
            'net': self.net,
            'online_players': self.online_player_count,
            'updated': self.timestamp.isoformat(),
            'status': self.status.value,
        }

    @classmethod
    def from_dict(cls, item_id: str, data: Dict[str, Any]) -> "MarketPressureRecord":
        try:
            return cls(
                item_id=item_id,
                demand=float(data['demand']),
                supply=float(data['supply']),
                online_player_count=int(data.get('online_players', 0)),
                timestamp=datetime.fromisoformat(data['updated']),
                status=ReadStatus(data.get('status', ReadStatus.OK.value)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise StoreDataError("Malformed pressure record", item_id=item_id, error=str(e)) from e


@dataclass(frozen=True)
class CorrectionFactors:
    """
    Correction factors shared by every item of one recomputation cycle.

    Computed once at the start of the cycle and read-only afterwards.
    """
    population: float
    time_of_day: float
    online_players: int
    server_capacity: int
    computed_at: datetime


@dataclass(frozen=True)
class PlayerSession:
    """Session of an online player, owned by the presence collaborator."""
    player_id: str
    login_time: datetime
    total_play_time_seconds: float = 0.0

    def duration_minutes(self, now: datetime) -> float:
        return (_ensure_utc(now) - _ensure_utc(self.login_time)).total_seconds() / 60.0


# ============================================================================
# Recomputation Types
# ============================================================================

@dataclass
class ItemUpdateResult:
    """Outcome of recomputing one item."""
    item_id: str
    outcome: ItemOutcome
    old_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None
    pressure: Optional[MarketPressureRecord] = None
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.outcome in (ItemOutcome.UPDATED, ItemOutcome.SEEDED)


@dataclass
class CycleReport:
    """Summary of one recomputation cycle."""
    cycle_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    total_items: int = 0
    updated: int = 0
    unchanged: int = 0
    seeded: int = 0
    failed: int = 0
    attempts: int = 1
    success: bool = False
    cancelled: bool = False
    purged_buckets: int = 0
    error: Optional[str] = None
    factors: Optional[CorrectionFactors] = None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def record(self, result: ItemUpdateResult) -> None:
        """Count one item result."""
        if result.outcome == ItemOutcome.UPDATED:
            self.updated += 1
        elif result.outcome == ItemOutcome.SEEDED:
            self.seeded += 1
        elif result.outcome == ItemOutcome.UNCHANGED:
            self.unchanged += 1
        else:
            self.failed += 1


@dataclass
class PriceCalculationDetail:
    """Step-by-step breakdown of one price computation, for admin debugging."""
    item_id: str
    base_price: Decimal
    current_price: Decimal
    demand_pressure: float
    supply_pressure: float
    population_factor: float
    time_factor: float
    candidate_price: Decimal
    final_price: Decimal
    calculated_at: datetime

    @property
    def was_limited(self) -> bool:
        return abs(self.final_price - self.candidate_price) > Decimal("0.01")


@dataclass
class PricePrediction:
    """Naive linear price projection from the current net pressure."""
    item_id: str
    current_price: Decimal
    short_term_price: Decimal
    medium_term_price: Decimal
    long_term_price: Decimal
    confidence: float
    predicted_at: datetime


# ============================================================================
# Monitoring Types
# ============================================================================

@dataclass
class ItemSnapshot:
    """Point-in-time view of one item."""
    item_id: str
    current_price: Optional[Decimal]
    base_price: Optional[Decimal]
    demand: float = 0.0
    supply: float = 0.0
    buy_volume: int = 0
    sell_volume: int = 0

    @property
    def net(self) -> float:
        return self.demand - self.supply


@dataclass
class MarketSnapshot:
    """Point-in-time view of the whole market."""
    timestamp: datetime
    online_players: int
    items: Dict[str, ItemSnapshot] = field(default_factory=dict)
    high_volatility_items: List[str] = field(default_factory=list)
    high_activity_items: List[str] = field(default_factory=list)
    average_activity: float = 0.0
    stability: float = 1.0

    @property
    def total_active_items(self) -> int:
        return len(self.items)


@dataclass
class MarketHealth:
    """Aggregate stability indicator over a sample of items."""
    stability: float
    active_items: int
    average_volatility: float
    high_volatility_items: int
    analyzed_at: datetime
