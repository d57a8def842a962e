"""System-wide constants and enumerations for the NPC market.

This module defines all constants, enumerations, and default values used
throughout the pricing engine. These values provide sensible defaults and
standardize string values across the codebase.
"""

from decimal import Decimal
from enum import Enum


# ============================================================================
# Enumerations
# ============================================================================

class TradeDirection(str, Enum):
    """Enumeration of trade directions, seen from the player.

    - BUY: Player buys from the NPC shop (demand)
    - SELL: Player sells to the NPC shop (supply)
    """
    BUY = "BUY"
    SELL = "SELL"


class QuoteSide(str, Enum):
    """Enumeration of price quote sides.

    - MID: Unadjusted candidate price (what the scheduler publishes)
    - BUY: Price a player pays when buying from the shop (+5% markup)
    - SELL: Price a player receives when selling to the shop (-5% markdown)
    """
    MID = "MID"
    BUY = "BUY"
    SELL = "SELL"


class ReadStatus(str, Enum):
    """Outcome classification for cache-backed reads.

    - OK: Value was read and computed normally
    - NO_SIGNAL: Not enough data to compute a value; default returned
    - UNAVAILABLE: The cache could not be reached; default returned
    """
    OK = "OK"
    NO_SIGNAL = "NO_SIGNAL"
    UNAVAILABLE = "UNAVAILABLE"


class SchedulerState(str, Enum):
    """Enumeration of price recomputation scheduler states.

    State transitions:
    IDLE -> RUNNING -> IDLE (cycle finished)
    IDLE -> BACKOFF -> RUNNING | IDLE (pre-flight failed, retrying)
    any  -> STOPPED (process shutdown)
    """
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    BACKOFF = "BACKOFF"
    STOPPED = "STOPPED"


class ItemOutcome(str, Enum):
    """Result of recomputing a single item within a cycle."""
    UPDATED = "UPDATED"
    UNCHANGED = "UNCHANGED"
    SEEDED = "SEEDED"
    FAILED = "FAILED"


class Environment(str, Enum):
    """Enumeration of runtime environments."""
    DEV = "dev"
    PROD = "prod"


# ============================================================================
# Pricing Constants
# ============================================================================

MAX_PRICE_CHANGE_PER_CYCLE: Decimal = Decimal("0.10")
"""Maximum price movement per recomputation cycle (±10% of current price)."""

MIN_PRICE_RATIO: Decimal = Decimal("0.50")
"""Nominal price floor as a fraction of the base price (50%)."""

MAX_PRICE_RATIO: Decimal = Decimal("3.00")
"""Nominal price ceiling as a fraction of the base price (300%)."""

BAND_FLOOR_WIDENING: Decimal = Decimal("0.8")
"""Multiplier applied to the nominal floor to get the hard floor (40% of base)."""

BAND_CEILING_WIDENING: Decimal = Decimal("1.2")
"""Multiplier applied to the nominal ceiling to get the hard ceiling (360% of base)."""

MINIMUM_PRICE: Decimal = Decimal("1.00")
"""Absolute minimum price of any item, in currency units."""

PRICE_QUANTUM: Decimal = Decimal("0.01")
"""Currency minor-unit precision used when rounding published prices."""

PRICE_CHANGE_EPSILON: Decimal = Decimal("0.01")
"""A recomputed price must move by more than this to be written."""

BUY_MARKUP: Decimal = Decimal("1.05")
"""Multiplier applied to buy-side quotes."""

SELL_MARKDOWN: Decimal = Decimal("0.95")
"""Multiplier applied to sell-side quotes."""


# ============================================================================
# Market Pressure Constants
# ============================================================================

MIN_PRESSURE: float = -1.0
"""Lower bound of demand/supply pressure."""

MAX_PRESSURE: float = 2.0
"""Upper bound of demand/supply pressure."""

HIGH_VOLATILITY_PRESSURE: float = 0.3
"""Net pressure magnitude above which an item counts as volatile in snapshots."""

HIGH_ACTIVITY_VOLUME: int = 50
"""Raw bucket volume above which an item counts as highly active in snapshots."""

HEALTH_VOLATILITY_PRESSURE: float = 0.5
"""Net pressure magnitude above which an item counts as volatile in market health."""

HEALTH_SAMPLE_SIZE: int = 20
"""Number of items sampled for the market health indicator."""

PREDICTION_HORIZON_WEIGHTS: tuple = (0.05, 0.15, 0.30)
"""Share of net pressure applied for short, medium and long term predictions."""

MIN_PREDICTION_CONFIDENCE: float = 0.3
"""Lower bound of prediction confidence."""


# ============================================================================
# Correction Factor Constants
# ============================================================================

MAX_POPULATION_CORRECTION: float = 2.0
"""Maximum population correction factor (empty or near-empty server)."""

BASELINE_CAPACITY_RATIO: float = 0.5
"""Baseline population is this fraction of server capacity."""

DEFAULT_SERVER_CAPACITY: int = 100
"""Server capacity used when the configured value cannot be read."""

NEUTRAL_FACTOR: float = 1.0
"""Factor used when a correction input cannot be read."""


# ============================================================================
# Volume Window Constants
# ============================================================================

BUCKET_MINUTES: int = 10
"""Width of a trade volume bucket."""

BUCKETS_PER_HOUR: int = 6
"""Number of buckets making up the trailing hour (current plus five prior)."""

BUCKET_TTL_SECONDS: int = 3600
"""Trade buckets expire one hour after creation."""

BUCKET_TIMESTAMP_FORMAT: str = "%Y%m%d%H%M"
"""Timestamp suffix of trade bucket keys (yyyyMMddHHmm)."""


# ============================================================================
# Cache TTL Constants
# ============================================================================

PRESSURE_TTL_SECONDS: int = 15 * 60
"""Freshness window of persisted market pressure records."""

SESSION_TTL_SECONDS: int = 24 * 3600
"""Lifetime of player session records."""

CONFIG_TTL_SECONDS: int = 3600
"""Lifetime of cached server settings."""

STATS_TTL_SECONDS: int = 2 * 24 * 3600
"""Lifetime of daily recomputation statistics."""

SNAPSHOT_TTL_SECONDS: int = 24 * 3600
"""Lifetime of cached market snapshots."""

DEFAULT_KEY_PREFIX: str = "hc2_economy:"
"""Namespace prepended to every cache key."""


# ============================================================================
# Scheduler Defaults
# ============================================================================

DEFAULT_INTERVAL_MINUTES: int = 10
"""Interval between scheduled recomputation cycles."""

DEFAULT_STARTUP_DELAY_SECONDS: int = 60
"""Delay before the first cycle so collaborators can finish starting."""

DEFAULT_MAX_RETRY_ATTEMPTS: int = 3
"""Pre-flight attempts per cycle before the cycle is abandoned."""

DEFAULT_RETRY_DELAY_SECONDS: int = 30
"""Delay between pre-flight attempts."""

DEFAULT_MAX_CONCURRENCY: int = 8
"""Number of items recomputed concurrently within a cycle."""
