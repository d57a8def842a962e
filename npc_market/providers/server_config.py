"""
Server configuration collaborator.

Settings are cached under config:{key} for an hour. When a setting is
missing from the cache the static default from the YAML configuration is
used.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..core.constants import CONFIG_TTL_SECONDS, DEFAULT_SERVER_CAPACITY
from ..storage import keys
from ..storage.cache_store import CacheStore


SERVER_CAPACITY_KEY = "server_max_capacity"


class ServerConfigProvider(ABC):
    """Source of server-wide settings."""

    @abstractmethod
    async def server_capacity(self) -> int:
        """Maximum number of players the server is sized for."""


class CacheServerConfigProvider(ServerConfigProvider):
    """Settings read from the cache with static fallbacks."""

    def __init__(self, store: CacheStore, defaults: Optional[Dict[str, Any]] = None):
        self.store = store
        self.defaults = {SERVER_CAPACITY_KEY: DEFAULT_SERVER_CAPACITY}
        self.defaults.update(defaults or {})

    async def get_setting(self, key: str) -> Optional[str]:
        value = await self.store.get(keys.config_key(key))
        if value is None and key in self.defaults:
            return str(self.defaults[key])
        return value

    async def cache_setting(self, key: str, value: Any) -> None:
        await self.store.set(keys.config_key(key), str(value), ttl_seconds=CONFIG_TTL_SECONDS)

    async def server_capacity(self) -> int:
        raw = await self.get_setting(SERVER_CAPACITY_KEY)
        try:
            capacity = int(float(raw))
        except (TypeError, ValueError):
            return int(self.defaults[SERVER_CAPACITY_KEY])
        return capacity if capacity > 0 else int(self.defaults[SERVER_CAPACITY_KEY])
