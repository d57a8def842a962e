"""Storage module: cache store interface, implementations and key schema."""

from .cache_store import CacheStore
from .memory_store import InMemoryCacheStore
from .price_book import PriceBook

__all__ = [
    'CacheStore',
    'InMemoryCacheStore',
    'PriceBook',
]
