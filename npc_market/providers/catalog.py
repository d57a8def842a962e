"""
Catalog collaborator.

The relational item catalog lives outside the pricing engine; this module
defines what the engine needs from it and an in-memory implementation
seeded from configuration.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import ItemNotFoundError
from ..core.types import Item


class CatalogProvider(ABC):
    """Source of items and their base prices."""

    @abstractmethod
    async def active_items(self) -> List[Item]:
        """All items currently open for trading."""

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[Item]:
        """Item by id, active or not."""

    @abstractmethod
    async def add_item(self, item: Item) -> Item:
        """Add or replace an item."""

    @abstractmethod
    async def set_active(self, item_id: str, active: bool) -> Item:
        """Open or close an item for trading."""

    @abstractmethod
    async def set_base_price(self, item_id: str, base_price: Decimal) -> Item:
        """Change the admin reference price of an item."""


class InMemoryCatalog(CatalogProvider):
    """
    Catalog held in memory.

    Items are never deleted, only deactivated. Returned items are copies so
    callers cannot mutate catalog state behind its back.
    """

    def __init__(self, items: Optional[Iterable[Item]] = None):
        self._items: Dict[str, Item] = {}
        for item in items or []:
            self._items[item.item_id] = item

    @staticmethod
    def _copy(item: Item) -> Item:
        return Item(
            item_id=item.item_id,
            base_price=item.base_price,
            active=item.active,
            display_name=item.display_name,
        )

    async def active_items(self) -> List[Item]:
        return [self._copy(i) for i in sorted(self._items.values(), key=lambda i: i.item_id) if i.active]

    async def get_item(self, item_id: str) -> Optional[Item]:
        item = self._items.get(item_id)
        return self._copy(item) if item else None

    async def add_item(self, item: Item) -> Item:
        self._items[item.item_id] = self._copy(item)
        return self._copy(item)

    async def set_active(self, item_id: str, active: bool) -> Item:
        item = self._require(item_id)
        item.active = active
        return self._copy(item)

    async def set_base_price(self, item_id: str, base_price: Decimal) -> Item:
        item = self._require(item_id)
        updated = Item(
            item_id=item.item_id,
            base_price=base_price,
            active=item.active,
            display_name=item.display_name,
        )
        self._items[item_id] = updated
        return self._copy(updated)

    def _require(self, item_id: str) -> Item:
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFoundError("Unknown item", item_id=item_id)
        return item
