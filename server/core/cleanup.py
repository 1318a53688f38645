"""Periodic sweep of expired cache entries.

The service owns its APScheduler instance and running flag. It is constructed
once by the container and started/stopped from the application lifespan.
All configuration comes from Settings (environment variables).
"""
import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Set, Tuple, TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from core.entry_store import StoreResult, category_value
from core.logging import get_logger
from models.cache import CacheCategory, CacheStats, DetailedCacheStats

if TYPE_CHECKING:
    from core.config import Settings
    from core.cache import CacheService

logger = get_logger(__name__)

CLEANUP_JOB_ID = "cache_cleanup"
INITIAL_CLEANUP_JOB_ID = "cache_cleanup_initial"

# How long stop() waits for an in-flight sweep before cancelling it
STOP_TIMEOUT_SECONDS = 10.0


def build_cleanup_trigger(interval_minutes: int) -> BaseTrigger:
    """Build a UTC trigger firing every `interval_minutes`.

    Intervals that divide an hour (or a day, in whole hours) map to a cron
    expression aligned to the clock. Anything else falls back to a plain
    interval trigger, since cron step fields cannot express it evenly.
    """
    if interval_minutes < 60 and 60 % interval_minutes == 0:
        return CronTrigger(minute=f"*/{interval_minutes}", timezone="UTC")

    hours, remainder = divmod(interval_minutes, 60)
    if remainder == 0 and hours <= 24 and 24 % hours == 0:
        return CronTrigger(minute="0", hour=f"*/{hours}", timezone="UTC")

    return IntervalTrigger(minutes=interval_minutes, timezone="UTC")


class CacheCleanupService:
    """Background sweep that keeps the cache table from growing unbounded.

    State machine: Stopped -> Running on start() (a second start is a no-op
    with a warning), Running -> Stopped on stop(). Starting also queues one
    immediate sweep so a fresh process does not wait a full interval.

    Scheduled sweeps run as tracked tasks; stop() waits for them (cancelling
    any still running after STOP_TIMEOUT_SECONDS) so the store can be closed
    right after it returns.
    """

    def __init__(self, cache: "CacheService", settings: "Settings"):
        self.cache = cache
        self.settings = settings
        self.interval_minutes = settings.cache_cleanup_interval_minutes
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._sweeps: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._sweeps)

    async def start(self) -> None:
        """Arm the periodic job and queue an immediate sweep."""
        if self._running:
            logger.warning("Cache cleanup service already running")
            return

        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self._run_scheduled,
            trigger=build_cleanup_trigger(self.interval_minutes),
            id=CLEANUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        # No trigger: a one-shot job that runs as soon as the scheduler starts
        scheduler.add_job(
            self._run_scheduled,
            id=INITIAL_CLEANUP_JOB_ID,
            misfire_grace_time=None
        )
        scheduler.start()

        self._scheduler = scheduler
        self._running = True
        logger.info("Cache cleanup service started", interval_minutes=self.interval_minutes)

    async def stop(self) -> None:
        """Cancel the timer and settle any sweep still in progress."""
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._running = False

        sweeps = list(self._sweeps)
        if sweeps:
            _, pending = await asyncio.wait(sweeps, timeout=STOP_TIMEOUT_SECONDS)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning("Cancelled in-flight cache cleanup", count=len(pending))
            self._sweeps.difference_update(sweeps)
        logger.info("Cache cleanup service stopped")

    async def _run_scheduled(self) -> Optional[int]:
        """Scheduler entry point: one tracked perform_cleanup run."""
        if not self._running:
            return None
        task = asyncio.create_task(self.perform_cleanup())
        self._sweeps.add(task)
        task.add_done_callback(self._sweeps.discard)
        return await task

    async def _sweep(self) -> Tuple[StoreResult[int], CacheStats, CacheStats, int]:
        start = time.perf_counter()
        stats_before = await self.cache.stats()
        result = await self.cache.store.sweep_expired()
        stats_after = await self.cache.stats()
        duration_ms = int((time.perf_counter() - start) * 1000)
        return result, stats_before, stats_after, duration_ms

    async def perform_cleanup(self) -> Optional[int]:
        """One scheduler tick. Returns count deleted, None when skipped or failed."""
        if not self.cache.is_available():
            logger.info("Database not connected, skipping cache cleanup")
            return None

        try:
            result, before, after, duration_ms = await self._sweep()
        except Exception as e:
            logger.error("Cache cleanup failed", error=str(e))
            return None

        if not result.ok:
            logger.error("Cache cleanup failed", error=str(result.error))
            return None

        logger.info(
            "Cache cleanup completed",
            duration_ms=duration_ms,
            entries_before=before.total,
            entries_after=after.total,
            deleted=result.value,
            expired_remaining=after.expired_count,
            by_category=after.by_category
        )
        return result.value

    async def force_cleanup(self) -> Dict[str, Any]:
        """Administrative sweep outside the timer.

        success is False only on infrastructure failure, never because there
        was nothing to delete.
        """
        start = time.perf_counter()

        if not self.cache.is_available():
            return {
                "success": False,
                "deletedCount": 0,
                "durationMs": int((time.perf_counter() - start) * 1000),
                "error": "Database not connected",
            }

        result, before, after, _ = await self._sweep()
        duration_ms = int((time.perf_counter() - start) * 1000)

        if not result.ok:
            logger.error("Forced cache cleanup failed", error=str(result.error))
            return {
                "success": False,
                "deletedCount": 0,
                "durationMs": duration_ms,
                "error": str(result.error),
            }

        logger.info("Forced cache cleanup completed", deleted=result.value,
                    entries_before=before.total, entries_after=after.total,
                    duration_ms=duration_ms)
        return {
            "success": True,
            "deletedCount": result.value,
            "durationMs": duration_ms,
        }

    def status(self) -> Dict[str, Any]:
        """Running flag, approximate next run (now + interval) and interval."""
        next_run = None
        if self._running:
            next_run = (datetime.now(timezone.utc) + timedelta(minutes=self.interval_minutes)).isoformat()

        return {
            "isRunning": self._running,
            "nextRunEstimate": next_run,
            "intervalMinutes": self.interval_minutes,
        }

    async def cleanup_by_category(self, category: CacheCategory) -> int:
        """Clear one category. Returns count deleted (0 when not connected)."""
        if not self.cache.is_available():
            logger.info("Database not connected, skipping cache cleanup",
                        category=category_value(category))
            return 0
        return await self.cache.clear_by_category(category)

    async def detailed_stats(self) -> DetailedCacheStats:
        """Stats plus the number of still-fresh entries."""
        if not self.cache.is_available():
            return DetailedCacheStats()
        return DetailedCacheStats.from_stats(await self.cache.stats())
