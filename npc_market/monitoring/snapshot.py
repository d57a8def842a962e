"""
Market Snapshot Builder - Point-in-time view of the market for monitoring.

A snapshot holds, per active item: published price, pressure (the stored
record if still fresh, otherwise computed on the spot) and raw volume of
the current 10-minute bucket. It also flags:
- high volatility: |net pressure| > 0.3
- high activity: current bucket volume > 50

Read-only apart from the cached copy under snapshot:{yyyyMMddTHHmm}.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from ..core.constants import (
    HIGH_VOLATILITY_PRESSURE,
    HIGH_ACTIVITY_VOLUME,
    HEALTH_VOLATILITY_PRESSURE,
    HEALTH_SAMPLE_SIZE,
    SNAPSHOT_TTL_SECONDS,
)
from ..core.exceptions import StoreError
from ..core.types import ItemSnapshot, MarketHealth, MarketSnapshot
from ..engine.pricing_service import PricingService
from ..storage import keys
from .logger import get_logger


class MarketSnapshotBuilder:
    """
    Assemble market snapshots and health indicators from the pricing service.
    """

    def __init__(self, service: PricingService, snapshot_path: Optional[str] = None):
        """
        Initialize snapshot builder.

        Args:
            service: Pricing service whose store and collaborators are read
            snapshot_path: Default JSON output path for save_snapshot
        """
        self.service = service
        self.snapshot_path = snapshot_path
        self.logger = get_logger(__name__)

    async def _online_players(self) -> int:
        try:
            return await self.service.presence.online_count()
        except StoreError as e:
            self.logger.warning("Online count unavailable for snapshot", error=str(e))
            return 0

    async def _item_snapshot(self, item_id: str, base_price, now: datetime) -> ItemSnapshot:
        record = await self.service.price_book.get_price(item_id)
        pressure = await self.service.price_book.get_pressure(item_id)
        if pressure is None:
            pressure = await self.service.pressure_engine.market_pressure(item_id, now, online_count=0)
        bucket = await self.service.volume_window.get_bucket(item_id, now)

        return ItemSnapshot(
            item_id=item_id,
            current_price=record.current_price if record else None,
            base_price=base_price,
            demand=pressure.demand,
            supply=pressure.supply,
            buy_volume=bucket.buy if bucket else 0,
            sell_volume=bucket.sell if bucket else 0,
        )

    async def build(self, cache: bool = True) -> MarketSnapshot:
        """
        Build a snapshot of every active item.

        Items whose data cannot be read are logged and left out.

        Args:
            cache: Also store the snapshot in the cache for 24 hours

        Returns:
            MarketSnapshot
        """
        now = self.service.clock()
        snapshot = MarketSnapshot(timestamp=now, online_players=await self._online_players())

        for item in await self.service.catalog.active_items():
            try:
                item_snapshot = await self._item_snapshot(item.item_id, item.base_price, now)
            except StoreError as e:
                self.logger.warning("Item left out of snapshot", item_id=item.item_id, error=str(e))
                continue

            snapshot.items[item.item_id] = item_snapshot
            if abs(item_snapshot.net) > HIGH_VOLATILITY_PRESSURE:
                snapshot.high_volatility_items.append(item.item_id)
            if item_snapshot.buy_volume + item_snapshot.sell_volume > HIGH_ACTIVITY_VOLUME:
                snapshot.high_activity_items.append(item.item_id)

        if snapshot.items:
            items = list(snapshot.items.values())
            snapshot.average_activity = sum(i.buy_volume + i.sell_volume for i in items) / len(items)
            average_volatility = sum(abs(i.net) for i in items) / len(items)
            snapshot.stability = max(0.0, 1.0 - average_volatility)

        self.logger.info(
            "Market snapshot built",
            items=snapshot.total_active_items,
            online=snapshot.online_players,
            volatile=len(snapshot.high_volatility_items),
            active=len(snapshot.high_activity_items),
            stability=f"{snapshot.stability:.3f}"
        )

        if cache:
            await self.cache_snapshot(snapshot)
        return snapshot

    async def market_health(self, sample_size: int = HEALTH_SAMPLE_SIZE) -> MarketHealth:
        """
        Stability over a sample of active items.

        stability = max(0, 1 - mean |net pressure|)
        """
        now = self.service.clock()
        items = await self.service.catalog.active_items()

        volatilities = []
        for item in items[:sample_size]:
            pressure = await self.service.pressure_engine.market_pressure(item.item_id, now, online_count=0)
            volatilities.append(abs(pressure.net))

        average = sum(volatilities) / len(volatilities) if volatilities else 0.0
        return MarketHealth(
            stability=max(0.0, 1.0 - average) if volatilities else 0.0,
            active_items=len(items),
            average_volatility=average,
            high_volatility_items=sum(1 for v in volatilities if v > HEALTH_VOLATILITY_PRESSURE),
            analyzed_at=now,
        )

    # ── Export ──────────────────────────────────────────────────────────

    @staticmethod
    def to_dict(snapshot: MarketSnapshot) -> Dict[str, Any]:
        """JSON-safe representation of a snapshot."""
        return {
            'timestamp': snapshot.timestamp.isoformat(),
            'online_players': snapshot.online_players,
            'total_active_items': snapshot.total_active_items,
            'average_activity': snapshot.average_activity,
            'stability': snapshot.stability,
            'high_volatility_items': list(snapshot.high_volatility_items),
            'high_activity_items': list(snapshot.high_activity_items),
            'items': {
                item_id: {
                    'current_price': str(i.current_price) if i.current_price is not None else None,
                    'base_price': str(i.base_price) if i.base_price is not None else None,
                    'demand': i.demand,
                    'supply': i.supply,
                    'net': i.net,
                    'buy_volume': i.buy_volume,
                    'sell_volume': i.sell_volume,
                }
                for item_id, i in snapshot.items.items()
            },
        }

    @staticmethod
    def to_dataframe(snapshot: MarketSnapshot) -> pd.DataFrame:
        """
        One row per item, sorted by absolute net pressure (most volatile first).

        Returns:
            pandas DataFrame
        """
        columns = [
            'item_id', 'current_price', 'base_price', 'demand', 'supply', 'net',
            'buy_volume', 'sell_volume', 'high_volatility', 'high_activity',
        ]
        rows = [
            {
                'item_id': i.item_id,
                'current_price': float(i.current_price) if i.current_price is not None else None,
                'base_price': float(i.base_price) if i.base_price is not None else None,
                'demand': i.demand,
                'supply': i.supply,
                'net': i.net,
                'buy_volume': i.buy_volume,
                'sell_volume': i.sell_volume,
                'high_volatility': i.item_id in snapshot.high_volatility_items,
                'high_activity': i.item_id in snapshot.high_activity_items,
            }
            for i in snapshot.items.values()
        ]
        df = pd.DataFrame(rows, columns=columns)
        if len(df) == 0:
            return df
        return df.reindex(df['net'].abs().sort_values(ascending=False).index).reset_index(drop=True)

    def save_snapshot(self, snapshot: MarketSnapshot, path: Optional[str] = None) -> Path:
        """
        Write a snapshot as JSON.

        Raises:
            ValueError: If no path is given and no default is configured
        """
        target = path or self.snapshot_path
        if not target:
            raise ValueError("No snapshot path configured")

        output = Path(target)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, 'w') as f:
            json.dump(self.to_dict(snapshot), f, indent=2)

        self.logger.info(f"Market snapshot saved to {output}")
        return output

    async def cache_snapshot(self, snapshot: MarketSnapshot) -> bool:
        """Store the snapshot under its timestamp key; best-effort."""
        try:
            await self.service.store.set(
                keys.snapshot_key(snapshot.timestamp),
                json.dumps(self.to_dict(snapshot)),
                ttl_seconds=SNAPSHOT_TTL_SECONDS,
            )
            return True
        except StoreError as e:
            self.logger.warning("Snapshot not cached", error=str(e))
            return False

    async def cached_snapshot(self, ts: datetime) -> Optional[Dict[str, Any]]:
        """Snapshot cached for the minute of ts, as a dictionary."""
        raw = await self.service.store.get(keys.snapshot_key(ts))
        return json.loads(raw) if raw else None
