"""
Price Recomputation Scheduler - Periodic republishing of every active price.

State machine:
    IDLE -> RUNNING -> IDLE              cycle finished
    RUNNING -> BACKOFF -> RUNNING        pre-flight failed, retrying
    BACKOFF -> IDLE                      retries exhausted, cycle abandoned
    any -> STOPPED                       shutdown

A cycle:
1. Pre-flight: the cache must answer a ping. Otherwise wait and retry the
   whole cycle, up to max_retry_attempts.
2. Snapshot the active items and compute correction factors once.
3. Recompute items concurrently (bounded by max_concurrency). A failing
   item is logged and counted; the rest carry on.
4. On the first cycle of each hour, purge expired trade buckets.
5. Record daily statistics.

Shutdown is observed before each item starts, never in the middle of one.
No failure inside a cycle ever stops the scheduler.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..core.constants import (
    ItemOutcome, SchedulerState,
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_STARTUP_DELAY_SECONDS,
    DEFAULT_MAX_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_MAX_CONCURRENCY,
)
from ..core.exceptions import (
    CycleAbortedError,
    EconomySystemError,
    SchedulerStateError,
    StoreError,
)
from ..core.types import CycleReport, Item, ItemUpdateResult
from ..monitoring.logger import get_logger
from .pricing_service import CycleScope, PricingService


class PriceRecomputationScheduler:
    """
    Drives recomputation cycles on a fixed interval.
    """

    def __init__(
        self,
        service: PricingService,
        interval_minutes: float = DEFAULT_INTERVAL_MINUTES,
        startup_delay_seconds: float = DEFAULT_STARTUP_DELAY_SECONDS,
        max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        maintenance_enabled: bool = True,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize scheduler.

        Args:
            service: Pricing service running the per-item pipeline
            interval_minutes: Delay between the end of one cycle and the next
            startup_delay_seconds: Delay before the first cycle
            max_retry_attempts: Pre-flight attempts per cycle
            retry_delay_seconds: Delay between pre-flight attempts
            max_concurrency: Items recomputed at the same time
            maintenance_enabled: Purge expired buckets once per hour
            clock: Source of "now" (defaults to the service clock)
        """
        if max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be >= 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self.service = service
        self.interval_seconds = interval_minutes * 60
        self.startup_delay_seconds = startup_delay_seconds
        self.max_retry_attempts = max_retry_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.max_concurrency = max_concurrency
        self.maintenance_enabled = maintenance_enabled
        self.clock = clock or service.clock

        self.state = SchedulerState.IDLE
        self.cycle_count = 0
        self.failed_cycles = 0
        self.last_report: Optional[CycleReport] = None
        self._last_purge_hour: Optional[datetime] = None
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

        self.logger = get_logger(__name__)
        self.logger.info(
            "Scheduler initialized",
            interval_minutes=interval_minutes,
            max_retries=max_retry_attempts,
            concurrency=max_concurrency
        )

    # ── Lifecycle ───────────────────────────────────────────────────────

    @property
    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def _set_state(self, state: SchedulerState) -> None:
        # STOPPED is terminal
        if self.state != SchedulerState.STOPPED:
            self.state = state

    def stop(self) -> None:
        """Request shutdown; the current item finishes, the rest are skipped."""
        if not self._stop_event.is_set():
            self.logger.info("Scheduler stop requested", state=self.state.value)
        self._stop_event.set()
        self.state = SchedulerState.STOPPED

    async def _wait(self, seconds: float) -> bool:
        """
        Sleep unless shutdown is requested.

        Returns:
            True if shutdown was requested
        """
        if seconds <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def run_forever(self) -> None:
        """
        Run cycles until stop() is called.

        Every cycle-level error is logged and the loop continues.
        """
        if self.state == SchedulerState.STOPPED:
            raise SchedulerStateError("Scheduler already stopped")

        self.logger.info("Scheduler started", startup_delay=self.startup_delay_seconds)
        if await self._wait(self.startup_delay_seconds):
            self.logger.info("Scheduler stopped before first cycle")
            return

        while not self.is_stopping:
            try:
                await self.run_cycle()
            except CycleAbortedError as e:
                self.logger.error("Cycle abandoned, waiting for next interval", error=str(e))
            except SchedulerStateError as e:
                self.logger.warning("Scheduled cycle skipped", error=str(e))
            except Exception as e:
                self.logger.error(
                    "Unexpected error in recomputation cycle",
                    cycle=self.cycle_count,
                    error=str(e),
                    exc_info=True
                )

            if await self._wait(self.interval_seconds):
                break

        self.logger.info("Scheduler loop ended", cycles=self.cycle_count, failed=self.failed_cycles)

    # ── Cycle ───────────────────────────────────────────────────────────

    async def _preflight(self, report: CycleReport) -> bool:
        """
        Check the cache is reachable, retrying with a fixed delay.

        Returns:
            True if the cycle may proceed
        """
        for attempt in range(1, self.max_retry_attempts + 1):
            report.attempts = attempt
            self._set_state(SchedulerState.RUNNING)
            try:
                if await self.service.store.ping():
                    return True
                error = "ping returned false"
            except StoreError as e:
                error = str(e)

            self.logger.warning(
                "Pre-flight check failed",
                cycle_id=report.cycle_id,
                attempt=attempt,
                max_attempts=self.max_retry_attempts,
                error=error
            )
            report.error = error
            if attempt < self.max_retry_attempts:
                self._set_state(SchedulerState.BACKOFF)
                if await self._wait(self.retry_delay_seconds):
                    report.cancelled = True
                    return False
        return False

    async def run_cycle(self) -> CycleReport:
        """
        Run one recomputation cycle now.

        Returns:
            CycleReport of the cycle

        Raises:
            SchedulerStateError: If a cycle is already running
            CycleAbortedError: If the pre-flight check kept failing
        """
        if self._cycle_lock.locked():
            raise SchedulerStateError("Recomputation cycle already running")

        async with self._cycle_lock:
            report = CycleReport(cycle_id=uuid.uuid4().hex[:8], started_at=self.clock())
            self.logger.info("Cycle started", cycle_id=report.cycle_id)

            reachable = False
            # Stats are recorded for abandoned cycles too, before the abort is raised
            try:
                reachable = await self._preflight(report)
                if reachable:
                    try:
                        async with self.service.cycle_scope(report.cycle_id) as scope:
                            await self._process_scope(scope, report)
                        report.success = not report.cancelled
                    except EconomySystemError as e:
                        report.error = str(e)
                        self.logger.error("Cycle failed", cycle_id=report.cycle_id, error=str(e))

                    await self._maintenance(report)
            finally:
                report.finished_at = self.clock()
                self._set_state(SchedulerState.IDLE)
                self._finish(report)

            await self.service.record_cycle_stats(report)
            if not reachable:
                return self._abandon(report)
            return report

    def _abandon(self, report: CycleReport) -> CycleReport:
        if report.cancelled:
            self.logger.info("Cycle cancelled during backoff", cycle_id=report.cycle_id)
            return report
        raise CycleAbortedError(
            "Cache unreachable, cycle abandoned",
            cycle_id=report.cycle_id,
            attempts=report.attempts,
            error=report.error
        )

    def _finish(self, report: CycleReport) -> None:
        self.cycle_count += 1
        if not report.success:
            self.failed_cycles += 1
        self.last_report = report
        self.logger.info(
            "Cycle finished",
            cycle_id=report.cycle_id,
            success=report.success,
            total=report.total_items,
            updated=report.updated,
            seeded=report.seeded,
            unchanged=report.unchanged,
            failed=report.failed,
            cancelled=report.cancelled,
            duration=f"{report.duration_seconds:.2f}s"
        )

    async def _process_scope(self, scope: CycleScope, report: CycleReport) -> None:
        report.factors = scope.factors
        report.total_items = len(scope.items)
        if not scope.items:
            self.logger.warning("No active items", cycle_id=scope.cycle_id)
            return

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def process(item: Item) -> Optional[ItemUpdateResult]:
            async with semaphore:
                if self._stop_event.is_set():
                    return None
                return await self._process_item(item, scope)

        results = await asyncio.gather(*(process(item) for item in scope.items))
        for result in results:
            if result is None:
                report.cancelled = True
            else:
                report.record(result)

        if report.cancelled:
            self.logger.warning(
                "Cycle interrupted by shutdown",
                cycle_id=scope.cycle_id,
                skipped=sum(1 for r in results if r is None)
            )

    async def _process_item(self, item: Item, scope: CycleScope) -> ItemUpdateResult:
        try:
            return await self.service.recompute_item(item, scope.factors, scope.cycle_id)
        except Exception as e:
            self.logger.error(
                "Unexpected item failure",
                cycle_id=scope.cycle_id,
                item_id=item.item_id,
                error=str(e),
                exc_info=True
            )
            return ItemUpdateResult(item_id=item.item_id, outcome=ItemOutcome.FAILED, error=str(e))

    # ── Maintenance ─────────────────────────────────────────────────────

    def _purge_due(self, now: datetime) -> bool:
        hour = now.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)
        return self._last_purge_hour != hour

    async def _maintenance(self, report: CycleReport) -> None:
        """Purge expired trade buckets on the first cycle of each hour."""
        if not self.maintenance_enabled or report.cancelled:
            return
        now = self.clock()
        if not self._purge_due(now):
            return
        try:
            report.purged_buckets = await self.service.volume_window.purge_expired(now)
            self._last_purge_hour = now.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)
        except StoreError as e:
            self.logger.warning("Bucket purge failed", cycle_id=report.cycle_id, error=str(e))

    # ── Status ──────────────────────────────────────────────────────────

    def get_status(self) -> Dict[str, Any]:
        """
        Scheduler status for monitoring.

        Returns:
            {
                'state': str,
                'cycles': int,
                'failed_cycles': int,
                'last_cycle_id': str or None,
                'last_success': bool or None,
                'last_finished': ISO timestamp or None
            }
        """
        last = self.last_report
        return {
            'state': self.state.value,
            'cycles': self.cycle_count,
            'failed_cycles': self.failed_cycles,
            'last_cycle_id': last.cycle_id if last else None,
            'last_success': last.success if last else None,
            'last_finished': last.finished_at.isoformat() if last and last.finished_at else None,
        }
