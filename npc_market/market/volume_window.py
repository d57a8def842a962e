"""
Volume Window Store - Per-item trade volume in 10-minute buckets.

Each trade increments the bucket covering "now". Buckets are keyed by the
UTC 10-minute boundary and expire one hour after creation; the expiry is
set on the first write and never renewed, so a busy bucket still ages out
on schedule.

Reads:
- current bucket: the bucket covering "now"
- trailing hour: current bucket plus the five before it (6 reads, no scan)

Correctness depends only on wall-clock alignment of bucket keys; there is
no persisted cursor.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from ..core.constants import (
    TradeDirection,
    BUCKET_MINUTES,
    BUCKETS_PER_HOUR,
    BUCKET_TTL_SECONDS,
)
from ..core.exceptions import StoreError
from ..core.types import ReadResult, TradeVolumeBucket, VolumeAggregate
from ..monitoring.logger import get_logger
from ..storage import keys
from ..storage.cache_store import CacheStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VolumeWindowStore:
    """
    Sliding trade-volume window backed by the cache.

    Writes come from the trading path and must never fail a trade; reads
    come from the recomputation cycle and report failures through
    ReadResult instead of raising.
    """

    def __init__(self, store: CacheStore, clock: Callable[[], datetime] = _utcnow):
        """
        Initialize volume window.

        Args:
            store: Shared cache store
            clock: Source of "now" (UTC)
        """
        self.store = store
        self.clock = clock
        self.logger = get_logger(__name__)

    async def record_trade(
        self,
        item_id: str,
        direction: TradeDirection,
        quantity: int,
        weight: float,
        now: Optional[datetime] = None
    ) -> bool:
        """
        Add a trade to the current bucket.

        Best-effort: a storage failure is logged and reported through the
        return value, never raised.

        Args:
            item_id: Traded item
            direction: BUY (player buys from shop) or SELL
            quantity: Raw traded quantity
            weight: Combined correction weight for this trade
            now: Trade time (defaults to clock)

        Returns:
            True if the trade was recorded

        Raises:
            ValueError: If quantity is not positive or weight is negative
        """
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        if weight < 0:
            raise ValueError(f"weight must be non-negative, got {weight}")

        now = now or self.clock()
        key = keys.trade_bucket_key(item_id, now)
        if direction == TradeDirection.BUY:
            raw_field, weighted_field = 'buy', 'weighted_buy'
        else:
            raw_field, weighted_field = 'sell', 'weighted_sell'

        try:
            await self.store.hincrby(key, raw_field, int(quantity))
            await self.store.hincrbyfloat(key, weighted_field, float(quantity) * float(weight))
            await self.store.expire(key, BUCKET_TTL_SECONDS, only_if_unset=True)
            return True
        except StoreError as e:
            self.logger.warning(
                "Trade volume not recorded",
                item_id=item_id,
                direction=direction.value,
                quantity=quantity,
                error=str(e)
            )
            return False

    async def get_bucket(self, item_id: str, ts: datetime) -> Optional[TradeVolumeBucket]:
        """
        Read the bucket covering ts.

        Returns:
            Bucket or None if no trade landed in it

        Raises:
            StoreError: If the cache cannot be read
        """
        data = await self.store.hgetall(keys.trade_bucket_key(item_id, ts))
        if not data:
            return None
        return TradeVolumeBucket.from_hash(item_id, keys.bucket_start(ts), data)

    async def _read_buckets(self, item_id: str, now: datetime, count: int) -> List[Optional[TradeVolumeBucket]]:
        times = [now - timedelta(minutes=BUCKET_MINUTES * i) for i in range(count)]
        return list(await asyncio.gather(*(self.get_bucket(item_id, t) for t in times)))

    async def current_bucket(self, item_id: str, now: Optional[datetime] = None) -> ReadResult[VolumeAggregate]:
        """Weighted buy/sell of the bucket covering now; zero if none exists."""
        now = now or self.clock()
        try:
            bucket = await self.get_bucket(item_id, now)
        except StoreError as e:
            self.logger.error("Current bucket read failed", item_id=item_id, error=str(e))
            return ReadResult.unavailable(VolumeAggregate(), str(e))
        if bucket is None:
            return ReadResult.no_signal(VolumeAggregate())
        return ReadResult.ok(bucket.aggregate())

    async def trailing_hour(self, item_id: str, now: Optional[datetime] = None) -> ReadResult[VolumeAggregate]:
        """Sum of the six most recent buckets; missing buckets count as zero."""
        result = await self.window(item_id, now)
        return ReadResult(value=result.value[1], status=result.status, error=result.error)

    async def window(
        self,
        item_id: str,
        now: Optional[datetime] = None
    ) -> ReadResult[Tuple[VolumeAggregate, VolumeAggregate]]:
        """
        Current bucket and trailing hour from a single set of reads.

        Returns:
            ReadResult of (current_bucket, trailing_hour)
        """
        now = now or self.clock()
        try:
            buckets = await self._read_buckets(item_id, now, BUCKETS_PER_HOUR)
        except StoreError as e:
            self.logger.error("Volume window read failed", item_id=item_id, error=str(e))
            return ReadResult.unavailable((VolumeAggregate(), VolumeAggregate()), str(e))

        current = buckets[0].aggregate() if buckets[0] else VolumeAggregate()
        trailing = VolumeAggregate()
        for bucket in buckets:
            if bucket is not None:
                trailing = trailing + bucket.aggregate()

        if all(b is None for b in buckets):
            return ReadResult.no_signal((current, trailing))
        return ReadResult.ok((current, trailing))

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete buckets older than one hour.

        Buckets normally expire by TTL; this reclaims any whose TTL was
        never applied. Deleting an already-gone key counts as zero, so
        repeated purges are harmless.

        Returns:
            Number of buckets deleted

        Raises:
            StoreError: If the bucket keys cannot be listed
        """
        now = now or self.clock()
        cutoff = keys.bucket_start(now - timedelta(seconds=BUCKET_TTL_SECONDS))

        deleted = 0
        for key in await self.store.scan_keys(keys.TRADE_BUCKET_PATTERN):
            parsed = keys.parse_trade_bucket_key(key)
            if parsed is None:
                continue
            _, started = parsed
            if started < cutoff:
                try:
                    deleted += await self.store.delete(key)
                except StoreError as e:
                    self.logger.warning("Failed to delete expired bucket", key=key, error=str(e))

        if deleted:
            self.logger.info("Purged expired trade buckets", count=deleted)
        return deleted
