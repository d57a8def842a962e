"""
Pytest configuration and fixtures for integration tests.
"""

import logging
import pytest

from npc_market.core.config import EconomySettings
from npc_market.main import EconomyService
from npc_market.monitoring.logger import setup_logger
from npc_market.storage.memory_store import InMemoryCacheStore


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: end-to-end tests against the in-memory cache store"
    )


@pytest.fixture(autouse=True)
def setup_logging(caplog):
    """
    Setup logging for all tests.

    Log output is captured so tests can assert on warnings, and the
    service logger is reset to console only afterwards.
    """
    caplog.set_level(logging.INFO)

    logging.getLogger('npc_market.engine.scheduler').setLevel(logging.INFO)
    logging.getLogger('npc_market.engine.pricing_service').setLevel(logging.INFO)
    logging.getLogger('npc_market.market.pressure').setLevel(logging.WARNING)

    yield
    setup_logger(log_file=None, level="DEBUG")


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to handle integration test markers.

    This automatically marks all tests in the integration directory
    as 'integration' tests.
    """
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def settings(tmp_path):
    return EconomySettings.from_dict({
        'scheduler': {'startup_delay_seconds': 0, 'retry_delay_seconds': 0},
        'monitoring': {
            'log_level': 'DEBUG',
            'log_file': str(tmp_path / "logs" / "npc_market.log"),
            'snapshot_path': str(tmp_path / "metrics" / "market_snapshot.json"),
        },
        'catalog': [
            {'item_id': 'harvestcraft:tomatoitem', 'base_price': '12.50'},
            {'item_id': 'harvestcraft:riceitem', 'base_price': '8.00'},
            {'item_id': 'minecraft:wheat', 'base_price': '4.00'},
            {'item_id': 'minecraft:golden_apple', 'base_price': '250.00', 'active': False},
        ],
    })


@pytest.fixture
def economy(settings, clock):
    """Fully wired service on an in-memory store driven by the test clock."""
    service = EconomyService(settings, store=InMemoryCacheStore(key_prefix="it:", clock=clock), clock=clock)
    service.setup()
    return service
