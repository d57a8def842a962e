"""Configuration loading for the NPC market.

Configuration lives in a YAML file (see config/config.yaml). Missing keys
fall back to the defaults in constants.py; values are validated once at
start-up so components can trust what they receive.
"""

import copy
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytz
import yaml

from .constants import (
    Environment,
    DEFAULT_KEY_PREFIX,
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_STARTUP_DELAY_SECONDS,
    DEFAULT_MAX_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_SERVER_CAPACITY,
    MAX_PRICE_CHANGE_PER_CYCLE,
    MIN_PRICE_RATIO,
    MAX_PRICE_RATIO,
    MINIMUM_PRICE,
    PRICE_CHANGE_EPSILON,
)
from .exceptions import InvalidConfigError, InvalidPriceError, MissingConfigError
from .types import Item


DEFAULT_CONFIG: Dict[str, Any] = {
    'environment': 'dev',
    'store': {
        'backend': 'memory',
        'url': 'redis://localhost:6379/0',
        'key_prefix': DEFAULT_KEY_PREFIX,
    },
    'pricing': {
        'max_change_per_cycle': str(MAX_PRICE_CHANGE_PER_CYCLE),
        'min_price_ratio': str(MIN_PRICE_RATIO),
        'max_price_ratio': str(MAX_PRICE_RATIO),
        'minimum_price': str(MINIMUM_PRICE),
        'change_epsilon': str(PRICE_CHANGE_EPSILON),
    },
    'scheduler': {
        'interval_minutes': DEFAULT_INTERVAL_MINUTES,
        'startup_delay_seconds': DEFAULT_STARTUP_DELAY_SECONDS,
        'max_retry_attempts': DEFAULT_MAX_RETRY_ATTEMPTS,
        'retry_delay_seconds': DEFAULT_RETRY_DELAY_SECONDS,
        'max_concurrency': DEFAULT_MAX_CONCURRENCY,
        'maintenance_enabled': True,
    },
    'server': {
        'capacity': DEFAULT_SERVER_CAPACITY,
        'timezone': 'UTC',
    },
    'monitoring': {
        'log_level': 'INFO',
        'log_file': 'data/logs/npc_market.log',
        'snapshot_path': 'data/metrics/market_snapshot.json',
    },
    'catalog': [],
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class EconomySettings:
    """Validated runtime settings."""
    environment: str = 'dev'
    store_backend: str = 'memory'
    store_url: str = 'redis://localhost:6379/0'
    key_prefix: str = DEFAULT_KEY_PREFIX
    max_change_per_cycle: Decimal = MAX_PRICE_CHANGE_PER_CYCLE
    min_price_ratio: Decimal = MIN_PRICE_RATIO
    max_price_ratio: Decimal = MAX_PRICE_RATIO
    minimum_price: Decimal = MINIMUM_PRICE
    change_epsilon: Decimal = PRICE_CHANGE_EPSILON
    interval_minutes: float = DEFAULT_INTERVAL_MINUTES
    startup_delay_seconds: float = DEFAULT_STARTUP_DELAY_SECONDS
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    maintenance_enabled: bool = True
    server_capacity: int = DEFAULT_SERVER_CAPACITY
    timezone: str = 'UTC'
    log_level: str = 'INFO'
    log_file: str = 'data/logs/npc_market.log'
    snapshot_path: str = 'data/metrics/market_snapshot.json'
    catalog: List[Item] = field(default_factory=list)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "EconomySettings":
        """
        Build settings from a (possibly partial) configuration dictionary.

        Args:
            config: Parsed YAML configuration

        Returns:
            Validated settings

        Raises:
            InvalidConfigError: If any value is out of range
        """
        cfg = _merge(DEFAULT_CONFIG, config or {})
        store = cfg['store']
        pricing = cfg['pricing']
        sched = cfg['scheduler']
        server = cfg['server']
        monitoring = cfg['monitoring']

        backend = str(store.get('backend', 'memory')).lower()
        if backend not in ('memory', 'redis'):
            raise InvalidConfigError("Unknown store backend", backend=backend)

        try:
            settings = cls(
                environment=str(cfg.get('environment', 'dev')),
                store_backend=backend,
                store_url=str(store.get('url')),
                key_prefix=str(store.get('key_prefix', DEFAULT_KEY_PREFIX)),
                max_change_per_cycle=Decimal(str(pricing['max_change_per_cycle'])),
                min_price_ratio=Decimal(str(pricing['min_price_ratio'])),
                max_price_ratio=Decimal(str(pricing['max_price_ratio'])),
                minimum_price=Decimal(str(pricing['minimum_price'])),
                change_epsilon=Decimal(str(pricing['change_epsilon'])),
                interval_minutes=float(sched['interval_minutes']),
                startup_delay_seconds=float(sched['startup_delay_seconds']),
                max_retry_attempts=int(sched['max_retry_attempts']),
                retry_delay_seconds=float(sched['retry_delay_seconds']),
                max_concurrency=int(sched['max_concurrency']),
                maintenance_enabled=bool(sched['maintenance_enabled']),
                server_capacity=int(server['capacity']),
                timezone=str(server['timezone']),
                log_level=str(monitoring['log_level']).upper(),
                log_file=str(monitoring['log_file']),
                snapshot_path=str(monitoring['snapshot_path']),
                catalog=[cls._parse_item(entry) for entry in cfg.get('catalog') or []],
            )
        except (TypeError, ValueError, ArithmeticError) as e:
            raise InvalidConfigError(f"Invalid configuration value: {e}") from e

        settings.validate()
        return settings

    @staticmethod
    def _parse_item(entry: Dict[str, Any]) -> Item:
        if 'item_id' not in entry or 'base_price' not in entry:
            raise InvalidConfigError("Catalog entry needs item_id and base_price", entry=entry)
        try:
            return Item(
                item_id=str(entry['item_id']),
                base_price=Decimal(str(entry['base_price'])),
                active=bool(entry.get('active', True)),
                display_name=entry.get('display_name'),
            )
        except InvalidPriceError as e:
            raise InvalidConfigError(
                "Invalid catalog base_price", item_id=entry['item_id'], base_price=entry['base_price']
            ) from e

    def validate(self) -> None:
        """Check ranges of numeric settings."""
        if self.environment not in {e.value for e in Environment}:
            raise InvalidConfigError("Unknown environment", environment=self.environment)
        if not Decimal("0") < self.max_change_per_cycle < Decimal("1"):
            raise InvalidConfigError("max_change_per_cycle must be in (0, 1)", value=self.max_change_per_cycle)
        if not Decimal("0") < self.min_price_ratio < self.max_price_ratio:
            raise InvalidConfigError(
                "Price ratios must satisfy 0 < min < max",
                min_price_ratio=self.min_price_ratio,
                max_price_ratio=self.max_price_ratio
            )
        if self.minimum_price <= 0:
            raise InvalidConfigError("minimum_price must be positive", value=self.minimum_price)
        if self.change_epsilon < 0:
            raise InvalidConfigError("change_epsilon must be >= 0", value=self.change_epsilon)
        if self.interval_minutes <= 0:
            raise InvalidConfigError("interval_minutes must be positive", value=self.interval_minutes)
        if self.startup_delay_seconds < 0:
            raise InvalidConfigError("startup_delay_seconds must be >= 0", value=self.startup_delay_seconds)
        if self.max_retry_attempts < 1:
            raise InvalidConfigError("max_retry_attempts must be >= 1", value=self.max_retry_attempts)
        if self.retry_delay_seconds < 0:
            raise InvalidConfigError("retry_delay_seconds must be >= 0", value=self.retry_delay_seconds)
        if self.max_concurrency < 1:
            raise InvalidConfigError("max_concurrency must be >= 1", value=self.max_concurrency)
        if self.server_capacity <= 0:
            raise InvalidConfigError("server capacity must be positive", value=self.server_capacity)
        if self.timezone not in pytz.all_timezones_set:
            raise InvalidConfigError("Unknown timezone", timezone=self.timezone)

        seen = set()
        for item in self.catalog:
            if item.item_id in seen:
                raise InvalidConfigError("Duplicate catalog item", item_id=item.item_id)
            seen.add(item.item_id)


def load_config(config_file: Optional[str] = None) -> EconomySettings:
    """
    Load settings from a YAML file.

    Args:
        config_file: Path to YAML file; None returns pure defaults

    Returns:
        Validated settings

    Raises:
        MissingConfigError: If the file does not exist
        InvalidConfigError: If the file is not valid YAML or has bad values
    """
    if config_file is None:
        return EconomySettings.from_dict({})

    path = Path(config_file)
    if not path.exists():
        raise MissingConfigError("Configuration file not found", path=str(path))

    try:
        with open(path, 'r') as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"Configuration file is not valid YAML: {e}", path=str(path)) from e

    if not isinstance(raw, dict):
        raise InvalidConfigError("Configuration root must be a mapping", path=str(path))

    return EconomySettings.from_dict(raw)
