"""
Shared fixtures: controllable clock, in-memory store and a wired pricing
service.

The default clock sits on Wednesday 2024-01-10 20:05 UTC, an evening hour
with time-of-day weight 1.0.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from npc_market.core.types import Item
from npc_market.engine.pricing_service import PricingService
from npc_market.monitoring.logger import setup_logger
from npc_market.providers.catalog import InMemoryCatalog
from npc_market.providers.presence import CachePresenceProvider
from npc_market.providers.server_config import CacheServerConfigProvider
from npc_market.storage.memory_store import InMemoryCacheStore


WEDNESDAY_EVENING = datetime(2024, 1, 10, 20, 5, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = WEDNESDAY_EVENING):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True, scope="session")
def console_only_logging():
    """Keep test runs from writing log files."""
    setup_logger(log_file=None, level="DEBUG")
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryCacheStore(key_prefix="test:", clock=clock)


@pytest.fixture
def items():
    return [
        Item(item_id="minecraft:wheat", base_price=Decimal("100")),
        Item(item_id="harvestcraft:tomatoitem", base_price=Decimal("10")),
        Item(item_id="minecraft:golden_apple", base_price=Decimal("250"), active=False),
    ]


@pytest.fixture
def catalog(items):
    return InMemoryCatalog(items)


@pytest.fixture
def presence(store):
    return CachePresenceProvider(store)


@pytest.fixture
def server_config(store):
    return CacheServerConfigProvider(store)


@pytest.fixture
def service(store, catalog, presence, server_config, clock):
    return PricingService(
        store=store,
        catalog=catalog,
        presence=presence,
        server_config=server_config,
        clock=clock,
    )


@pytest.fixture
def go_online(presence, clock):
    """Async helper putting players online, logged in minutes_ago before now."""
    async def _go_online(count: int, minutes_ago: float = 0, prefix: str = "player"):
        login = clock() - timedelta(minutes=minutes_ago)
        ids = [f"{prefix}-{i}" for i in range(count)]
        for player_id in ids:
            await presence.player_login(player_id, login)
        return ids
    return _go_online
