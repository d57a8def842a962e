"""
Player presence collaborator.

Online players are a set under online_players; each player's session is a
hash under session:{player_id} holding login_time (ISO-8601) and
total_play_time (seconds), expiring after 24 hours.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from ..core.constants import SESSION_TTL_SECONDS
from ..core.types import PlayerSession
from ..storage import keys
from ..storage.cache_store import CacheStore


class PlayerPresenceProvider(ABC):
    """Source of online population and per-player sessions."""

    @abstractmethod
    async def online_count(self) -> int:
        """Number of players currently online."""

    @abstractmethod
    async def session(self, player_id: str) -> Optional[PlayerSession]:
        """Session of a player, or None for unknown players."""


class CachePresenceProvider(PlayerPresenceProvider):
    """Presence read from (and maintained in) the shared cache."""

    def __init__(self, store: CacheStore):
        self.store = store

    async def online_count(self) -> int:
        return await self.store.scard(keys.ONLINE_PLAYERS)

    async def session(self, player_id: str) -> Optional[PlayerSession]:
        data = await self.store.hgetall(keys.session_key(player_id))
        login_raw = data.get('login_time')
        if not login_raw:
            return None
        try:
            login_time = datetime.fromisoformat(login_raw)
        except ValueError:
            return None
        try:
            play_time = float(data.get('total_play_time', 0) or 0)
        except ValueError:
            play_time = 0.0
        return PlayerSession(
            player_id=player_id,
            login_time=login_time,
            total_play_time_seconds=play_time,
        )

    async def player_login(self, player_id: str, now: Optional[datetime] = None) -> None:
        """Mark a player online and start their session."""
        now = now or datetime.now(timezone.utc)
        await self.store.sadd(keys.ONLINE_PLAYERS, player_id)
        key = keys.session_key(player_id)
        await self.store.hset(key, {'login_time': now.isoformat(), 'total_play_time': '0'})
        await self.store.expire(key, SESSION_TTL_SECONDS)

    async def player_logout(self, player_id: str) -> None:
        """Mark a player offline and drop their session."""
        await self.store.srem(keys.ONLINE_PLAYERS, player_id)
        await self.store.delete(keys.session_key(player_id))
