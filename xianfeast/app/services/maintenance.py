"""Periodic cleanup of rate limiter windows and expired cache entries.

Neither the limiter nor the caches run timers of their own; the application
drives their ``cleanup()`` from this background loop, started and stopped
by the FastAPI lifespan. When a CacheWarmer is attached, each cycle also
reloads the warmed data before cleaning up, so long-running processes keep
serving fresh stalls, products and businesses.
"""

import asyncio
import logging
from typing import Optional

from xianfeast.app.core.cache import AppCaches
from xianfeast.app.services.cache_warmer import CacheWarmer
from xianfeast.app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class MaintenanceService:
    """Runs cleanup (and optionally a cache refresh) on a fixed interval.

    Usage:
        service = MaintenanceService(limiter, caches, interval=300, cache_warmer=warmer)
        await service.start()
        ...
        await service.stop()
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        caches: AppCaches,
        interval: float = 300.0,
        cache_warmer: Optional[CacheWarmer] = None,
    ):
        self._rate_limiter = rate_limiter
        self._caches = caches
        self._interval = interval
        self.cache_warmer = cache_warmer
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.runs = 0
        self.refreshes = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    def run_once(self) -> dict:
        """Clean everything now.

        Returns:
            Removed counts: ``rate_limiter`` plus one entry per cache name
        """
        removed = {"rate_limiter": self._rate_limiter.cleanup()}
        removed.update(self._caches.cleanup())
        self.runs += 1

        total = sum(removed.values())
        if total:
            logger.info(f"Maintenance removed {total} expired items", extra={"removed": removed})
        else:
            logger.debug("Maintenance found nothing to remove")
        return removed

    async def run_cycle(self) -> dict:
        """One loop iteration: refresh warmed caches, then clean up."""
        if self.cache_warmer is not None:
            try:
                await self.cache_warmer.warm()
                self.refreshes += 1
            except Exception as e:
                logger.error(f"Error refreshing caches: {e}")
        return self.run_once()

    async def start(self) -> None:
        if self._task is not None:
            logger.debug("Maintenance already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started maintenance loop (interval: {self._interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Maintenance task did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped maintenance loop")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                # Interval elapsed
                pass
            else:
                break

            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"Error during maintenance cycle: {e}")
