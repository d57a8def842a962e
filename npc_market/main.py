"""
NPC Market Service - Central orchestrator.

Start-up:
1. Load configuration (YAML)
2. Configure logging
3. Build the cache store (memory or Redis) and collaborators
4. Build pricing service, scheduler and snapshot builder
5. Check the store is reachable

Run:
- Scheduler loop until SIGINT/SIGTERM, or
- a single cycle followed by a market snapshot (--once)

Shutdown:
- Stop the scheduler between items
- Close the store
"""

import argparse
import asyncio
import signal
from datetime import datetime, timezone
from typing import Callable, Optional

from .core.config import EconomySettings, load_config
from .core.constants import Environment
from .core.exceptions import EconomySystemError
from .core.types import CycleReport, MarketSnapshot
from .engine.pricing_service import PricingService
from .engine.scheduler import PriceRecomputationScheduler
from .monitoring.logger import get_logger, setup_logger
from .monitoring.snapshot import MarketSnapshotBuilder
from .providers.catalog import InMemoryCatalog
from .providers.presence import CachePresenceProvider
from .providers.server_config import CacheServerConfigProvider, SERVER_CAPACITY_KEY
from .risk.price_limiter import PriceLimiter
from .storage.cache_store import CacheStore
from .storage.memory_store import InMemoryCacheStore
from .storage.redis_store import RedisCacheStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EconomyService:
    """
    Main NPC market orchestrator.

    Wires every component around one shared cache store.
    """

    def __init__(
        self,
        settings: EconomySettings,
        store: Optional[CacheStore] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize service.

        Args:
            settings: Validated settings
            store: Pre-built store (built from settings if None)
            clock: Source of "now" (UTC) shared by every component
        """
        self.settings = settings
        self.clock = clock
        self.env = settings.environment

        setup_logger(log_file=settings.log_file, level=settings.log_level)
        self.logger = get_logger(__name__)

        self.store: Optional[CacheStore] = store
        self.pricing: Optional[PricingService] = None
        self.scheduler: Optional[PriceRecomputationScheduler] = None
        self.snapshots: Optional[MarketSnapshotBuilder] = None

    @classmethod
    def from_config(cls, config_file: Optional[str] = None, env: Optional[str] = None) -> "EconomyService":
        settings = load_config(config_file)
        if env:
            settings.environment = env
        return cls(settings)

    def _build_store(self) -> CacheStore:
        if self.settings.store_backend == 'redis':
            return RedisCacheStore(url=self.settings.store_url, key_prefix=self.settings.key_prefix)
        return InMemoryCacheStore(key_prefix=self.settings.key_prefix, clock=self.clock)

    def setup(self) -> None:
        """Build all components."""
        s = self.settings
        self.logger.info("=" * 60)
        self.logger.info("Initializing NPC market", env=self.env, backend=s.store_backend)
        self.logger.info("=" * 60)

        if self.store is None:
            self.store = self._build_store()

        catalog = InMemoryCatalog(s.catalog)
        presence = CachePresenceProvider(self.store)
        server_config = CacheServerConfigProvider(
            self.store, defaults={SERVER_CAPACITY_KEY: s.server_capacity}
        )
        limiter = PriceLimiter(
            max_change_per_cycle=s.max_change_per_cycle,
            min_price_ratio=s.min_price_ratio,
            max_price_ratio=s.max_price_ratio,
            minimum_price=s.minimum_price,
        )

        self.pricing = PricingService(
            store=self.store,
            catalog=catalog,
            presence=presence,
            server_config=server_config,
            limiter=limiter,
            timezone_name=s.timezone,
            default_capacity=s.server_capacity,
            change_epsilon=s.change_epsilon,
            clock=self.clock,
        )
        self.scheduler = PriceRecomputationScheduler(
            self.pricing,
            interval_minutes=s.interval_minutes,
            startup_delay_seconds=s.startup_delay_seconds,
            max_retry_attempts=s.max_retry_attempts,
            retry_delay_seconds=s.retry_delay_seconds,
            max_concurrency=s.max_concurrency,
            maintenance_enabled=s.maintenance_enabled,
        )
        self.snapshots = MarketSnapshotBuilder(self.pricing, snapshot_path=s.snapshot_path)

        self.logger.info("✓ Components ready", items=len(s.catalog))

    async def check_store(self) -> bool:
        try:
            ok = await self.store.ping()
        except EconomySystemError as e:
            self.logger.error("Cache store unreachable", error=str(e))
            return False
        if ok:
            self.logger.info("✓ Cache store reachable")
        return ok

    async def recompute_all(self) -> CycleReport:
        """Run one full recomputation cycle now."""
        return await self.scheduler.run_cycle()

    async def run_once(self) -> Optional[MarketSnapshot]:
        """Run a single cycle and save a market snapshot."""
        self.setup()
        try:
            if not await self.check_store():
                return None
            await self.recompute_all()
            snapshot = await self.snapshots.build()
            self.snapshots.save_snapshot(snapshot)
            return snapshot
        finally:
            await self.shutdown()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._signal_handler, signum)
            except NotImplementedError:
                # Event loops without signal support (Windows)
                signal.signal(signum, lambda s, f: self._signal_handler(s))

    def _signal_handler(self, signum) -> None:
        """Handle shutdown signals."""
        self.logger.info(f"Received signal {signum} - initiating shutdown")
        if self.scheduler:
            self.scheduler.stop()

    async def run(self) -> None:
        """Run the scheduler until a shutdown signal arrives."""
        self.setup()
        self._install_signal_handlers()
        try:
            if not await self.check_store():
                self.logger.warning("Starting anyway; cycles retry until the store is reachable")
            await self.scheduler.run_forever()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        self.logger.info("Shutting down NPC market")
        if self.scheduler:
            self.scheduler.stop()
        if self.store:
            try:
                await self.store.close()
            except EconomySystemError as e:
                self.logger.error("Error closing cache store", error=str(e))
        self.logger.info("✓ Shutdown complete")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="NPC shop market pricing service")
    parser.add_argument(
        '--config',
        default='config/config.yaml',
        help='Configuration file path'
    )
    parser.add_argument(
        '--env',
        choices=[e.value for e in Environment],
        default=None,
        help='Runtime environment (overrides the config file)'
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='Run a single recomputation cycle, save a snapshot and exit'
    )
    args = parser.parse_args()

    try:
        service = EconomyService.from_config(args.config, env=args.env)
    except EconomySystemError as e:
        parser.exit(2, f"Configuration error: {e}\n")

    if args.once:
        snapshot = asyncio.run(service.run_once())
        if snapshot is None:
            parser.exit(1, "Cache store unreachable\n")
        df = service.snapshots.to_dataframe(snapshot)
        print(df.to_string(index=False) if len(df) else "No active items")
        return

    asyncio.run(service.run())


if __name__ == "__main__":
    main()
