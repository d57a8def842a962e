"""
Price Book - Persistence of published prices and pressure records.

Prices live under price:{item_id} with no expiry and are overwritten on
every change. Pressure records live under pressure:{item_id} and expire
after the 15-minute freshness window.

Store errors are not caught here; the pricing pipeline decides whether a
failure skips an item or aborts a cycle.
"""

import json
from typing import Optional

from ..core.constants import PRESSURE_TTL_SECONDS
from ..core.exceptions import StoreDataError
from ..core.types import MarketPressureRecord, PriceRecord
from . import keys
from .cache_store import CacheStore


class PriceBook:
    """JSON documents for price and pressure records."""

    def __init__(self, store: CacheStore):
        self.store = store

    @staticmethod
    def _decode(raw: str, item_id: str) -> dict:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreDataError("Record is not valid JSON", item_id=item_id) from e
        if not isinstance(data, dict):
            raise StoreDataError("Record is not a JSON object", item_id=item_id)
        return data

    async def get_price(self, item_id: str) -> Optional[PriceRecord]:
        """
        Load the current price record.

        Returns:
            PriceRecord or None if the item has never been priced

        Raises:
            StoreUnavailableError: If the cache is unreachable
            StoreDataError: If the stored record is malformed
        """
        raw = await self.store.get(keys.price_key(item_id))
        if raw is None:
            return None
        return PriceRecord.from_dict(item_id, self._decode(raw, item_id))

    async def set_price(self, record: PriceRecord) -> None:
        """Overwrite the price record (last write wins)."""
        await self.store.set(keys.price_key(record.item_id), json.dumps(record.to_dict()))

    async def get_pressure(self, item_id: str) -> Optional[MarketPressureRecord]:
        """Load the last persisted pressure record, if still fresh."""
        raw = await self.store.get(keys.pressure_key(item_id))
        if raw is None:
            return None
        return MarketPressureRecord.from_dict(item_id, self._decode(raw, item_id))

    async def set_pressure(self, record: MarketPressureRecord) -> None:
        await self.store.set(
            keys.pressure_key(record.item_id),
            json.dumps(record.to_dict()),
            ttl_seconds=PRESSURE_TTL_SECONDS,
        )
