"""
Correction Factor Calculator - Population, time-of-day and session weights.

Three independent multipliers dampen or amplify market pressure:

Population correction:
    factor = min(2.0, (capacity × 0.5) / online)
    An empty server gets the maximum 2.0. Thin populations would otherwise
    turn every single trade into a large pressure swing.

Time-of-day weight (evaluated in the server timezone, first match wins):
    1. hour in [18, 23] or weekend      -> 1.0
    2. weekday hour in [9, 17]          -> 0.6
    3. hour in [14, 17] or [6, 8]       -> 0.8
    4. otherwise                        -> 0.3
    Bands 2 and 3 overlap on weekday afternoons; band 2 wins, so on a
    weekday band 3 only ever matches 06:00-08:59.

Session weight (minutes since login):
    >= 120 -> 1.0, >= 30 -> 0.8, >= 10 -> 0.6, else (or unknown) -> 0.3
"""

from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

import pytz

from ..core.constants import (
    MAX_POPULATION_CORRECTION,
    BASELINE_CAPACITY_RATIO,
    DEFAULT_SERVER_CAPACITY,
    NEUTRAL_FACTOR,
)
from ..core.exceptions import StoreError
from ..core.types import CorrectionFactors
from ..monitoring.logger import get_logger
from ..providers.presence import PlayerPresenceProvider
from ..providers.server_config import ServerConfigProvider


SESSION_READ_FAILURE_WEIGHT: float = 0.6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def population_correction(online_count: int, server_capacity: float) -> float:
    """
    Population correction factor.

    Args:
        online_count: Players currently online
        server_capacity: Players the server is sized for

    Returns:
        Factor in (0, 2.0], monotonically decreasing in online_count
    """
    if online_count <= 0:
        return MAX_POPULATION_CORRECTION
    baseline = server_capacity * BASELINE_CAPACITY_RATIO
    return min(MAX_POPULATION_CORRECTION, baseline / online_count)


def time_of_day_weight(local_time: datetime) -> float:
    """
    Activity weight for the hour and day of local_time.

    The bands are checked in order and the first match wins.
    """
    hour = local_time.hour
    is_weekend = local_time.weekday() >= 5

    if 18 <= hour <= 23 or is_weekend:
        return 1.0
    if 9 <= hour <= 17 and not is_weekend:
        return 0.6
    if 14 <= hour <= 17 or 6 <= hour <= 8:
        return 0.8
    return 0.3


def session_weight(session_minutes: Optional[float]) -> float:
    """
    Weight of a trade by how long the player has been online.

    Args:
        session_minutes: Minutes since login, None for unknown players
    """
    if session_minutes is None:
        return 0.3
    if session_minutes >= 120:
        return 1.0
    if session_minutes >= 30:
        return 0.8
    if session_minutes >= 10:
        return 0.6
    return 0.3


class CorrectionFactorCalculator:
    """
    Computes correction factors from presence and server configuration.

    Pure formulas are module-level functions; this class adds the I/O
    and its fail-soft defaults (factor 1.0 when the player count cannot
    be read, capacity 100 when the setting cannot be read).
    """

    def __init__(
        self,
        presence: PlayerPresenceProvider,
        server_config: ServerConfigProvider,
        timezone_name: str = "UTC",
        default_capacity: int = DEFAULT_SERVER_CAPACITY,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize calculator.

        Args:
            presence: Player presence collaborator
            server_config: Server settings collaborator
            timezone_name: Timezone in which time-of-day bands are evaluated
            default_capacity: Capacity used when the setting cannot be read
            clock: Source of "now" (UTC)
        """
        self.presence = presence
        self.server_config = server_config
        self.tz = pytz.timezone(timezone_name)
        self.default_capacity = default_capacity
        self.clock = clock
        self.logger = get_logger(__name__)

    population_correction = staticmethod(population_correction)
    session_weight = staticmethod(session_weight)

    def time_of_day_weight(self, now: Optional[datetime] = None) -> float:
        """Time-of-day weight of now, converted to the server timezone."""
        now = now or self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return time_of_day_weight(now.astimezone(self.tz))

    async def _server_capacity(self) -> int:
        try:
            return await self.server_config.server_capacity()
        except StoreError as e:
            self.logger.warning("Server capacity unavailable, using default",
                                default=self.default_capacity, error=str(e))
            return self.default_capacity

    async def _population_inputs(self) -> Tuple[Optional[int], int]:
        capacity = await self._server_capacity()
        try:
            online = await self.presence.online_count()
        except StoreError as e:
            self.logger.warning("Online player count unavailable", error=str(e))
            online = None
        return online, capacity

    async def population_factor(self) -> float:
        """Population correction for the current population."""
        online, capacity = await self._population_inputs()
        if online is None:
            return NEUTRAL_FACTOR
        return population_correction(online, capacity)

    async def session_factor(self, player_id: Optional[str], now: Optional[datetime] = None) -> float:
        """Session weight of a player; unknown players get the minimum weight."""
        if not player_id:
            return session_weight(None)
        now = now or self.clock()
        try:
            session = await self.presence.session(player_id)
        except StoreError as e:
            self.logger.warning("Session unavailable", player_id=player_id, error=str(e))
            return SESSION_READ_FAILURE_WEIGHT
        if session is None:
            return session_weight(None)
        return session_weight(session.duration_minutes(now))

    async def cycle_factors(self, now: Optional[datetime] = None) -> CorrectionFactors:
        """
        Factors shared by every item of one recomputation cycle.

        Never raises for storage problems; unreadable inputs fall back to
        neutral defaults.
        """
        now = now or self.clock()
        online, capacity = await self._population_inputs()
        population = NEUTRAL_FACTOR if online is None else population_correction(online, capacity)
        factors = CorrectionFactors(
            population=population,
            time_of_day=self.time_of_day_weight(now),
            online_players=online or 0,
            server_capacity=capacity,
            computed_at=now,
        )
        self.logger.info(
            "Correction factors computed",
            population=f"{factors.population:.3f}",
            time_of_day=factors.time_of_day,
            online=factors.online_players,
            capacity=factors.server_capacity
        )
        return factors

    async def trade_weight(self, player_id: Optional[str], now: Optional[datetime] = None) -> float:
        """
        Combined weight of a single trade: session × time-of-day × population.
        """
        now = now or self.clock()
        session = await self.session_factor(player_id, now)
        population = await self.population_factor()
        return session * self.time_of_day_weight(now) * population
