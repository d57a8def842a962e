"""Collaborator interfaces consumed by the pricing engine."""

from .presence import PlayerPresenceProvider, CachePresenceProvider
from .catalog import CatalogProvider, InMemoryCatalog
from .server_config import ServerConfigProvider, CacheServerConfigProvider

__all__ = [
    "PlayerPresenceProvider",
    "CachePresenceProvider",
    "CatalogProvider",
    "InMemoryCatalog",
    "ServerConfigProvider",
    "CacheServerConfigProvider",
]
