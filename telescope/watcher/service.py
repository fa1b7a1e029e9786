"""
Watcher service - runs the reconciler for every platform on a fixed tick.

Each tick reconciles the configured platforms sequentially, then the
service sleeps for the poll interval. Ticks never overlap. ``stop()``
interrupts the sleep between ticks but never a running tick.

Features:
- Explicit adapter/ledger/notifier construction at startup
- Graceful shutdown
- Health monitoring
- Metrics collection
"""

import asyncio
import time
import uuid
from typing import Any

import structlog

from telescope.config.settings import get_settings
from telescope.notifications.channels import Notifier, create_notifier
from telescope.observability.logging import log_context
from telescope.observability.metrics import get_metrics
from telescope.platforms.base_adapter import BaseAdapter
from telescope.platforms.registry import create_adapters
from telescope.platforms.schemas import Platform
from telescope.storage.ledger import SubscriptionLedger
from telescope.watcher.reconciler import Reconciler
from telescope.watcher.schemas import TickStats

logger = structlog.get_logger(__name__)


class WatcherService:
    """
    Service that polls every platform and reconciles subscriptions.

    Usage:
        service = WatcherService()
        await service.start()  # Runs until stopped
    """

    def __init__(
        self,
        adapters: dict[Platform, BaseAdapter] | None = None,
        ledger: SubscriptionLedger | None = None,
        notifier: Notifier | None = None,
        poll_interval: float | None = None,
    ):
        """
        Initialize the watcher service.

        Args:
            adapters: Platform adapters (or create from config)
            ledger: Subscription ledger (or create from config)
            notifier: Notification sender (or create from config)
            poll_interval: Seconds between ticks (default from settings)
        """
        settings = get_settings()

        self._poll_interval = poll_interval or settings.poll_interval_seconds
        self._adapters = adapters if adapters is not None else create_adapters(settings)
        self._ledger = ledger or SubscriptionLedger()
        self._notifier = notifier or create_notifier(settings)
        self._metrics = get_metrics()
        self._reconciler = Reconciler(self._ledger, self._notifier, self._metrics)

        self._running = False
        self._stop_event = asyncio.Event()

        logger.info(
            "Watcher service initialized",
            platforms=[platform.value for platform in self._adapters],
            notifier=self._notifier.name,
            poll_interval=self._poll_interval,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start the watcher.

        Sleeps for the poll interval, then ticks, until stop() is called.
        """
        self._running = True
        self._stop_event.clear()

        logger.info("Starting watcher service")

        try:
            await self._ledger.connect()
            while self._running:
                if await self._wait_for_stop():
                    break
                await self.tick()
        except asyncio.CancelledError:
            logger.info("Watcher service cancelled")
        finally:
            self._running = False
            await self._ledger.close()
            logger.info("Watcher service stopped")

    async def stop(self) -> None:
        """Stop the watcher after the current tick."""
        logger.info("Stopping watcher service")
        self._running = False
        self._stop_event.set()

    async def _wait_for_stop(self) -> bool:
        """Sleep for one poll interval. Returns True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def tick(self) -> dict[Platform, TickStats]:
        """
        Reconcile every platform once, sequentially.

        A failure on one platform is logged and counted; the remaining
        platforms still run.

        Returns:
            Stats per platform that completed
        """
        results: dict[Platform, TickStats] = {}

        with log_context(tick=uuid.uuid4().hex[:8]):
            for platform, adapter in self._adapters.items():
                with log_context(platform=platform):
                    stats = await self._reconcile_platform(platform, adapter)
                if stats is not None:
                    results[platform] = stats

        return results

    async def _reconcile_platform(
        self,
        platform: Platform,
        adapter: BaseAdapter,
    ) -> TickStats | None:
        start_time = time.monotonic()
        try:
            stats = await self._reconciler.reconcile(adapter)
        except Exception as e:
            logger.error("Reconciliation failed", error=str(e))
            self._metrics.record_tick_error(platform, type(e).__name__)
            return None

        elapsed = time.monotonic() - start_time
        self._metrics.record_tick(platform, elapsed)
        logger.info(
            "Reconciliation completed",
            elapsed_seconds=round(elapsed, 2),
            **stats.summary(),
        )
        return stats

    async def run_once(self) -> dict[Platform, TickStats]:
        """
        Run one tick for all platforms without sleeping.

        Useful for testing or manual triggers.
        """
        await self._ledger.connect()
        try:
            return await self.tick()
        finally:
            await self._ledger.close()

    async def health_check(self) -> dict[str, Any]:
        """
        Check health of the service and its dependencies.

        Returns:
            Health status dictionary
        """
        adapters: dict[str, bool] = {}
        for platform, adapter in self._adapters.items():
            try:
                healthy = await adapter.health_check()
            except Exception as e:
                logger.warning("Adapter health check failed", platform=platform.value, error=str(e))
                healthy = False
            self._metrics.set_adapter_health(platform, healthy)
            adapters[platform.value] = healthy

        return {
            "running": self._running,
            "redis": await self._ledger.health_check(),
            "notifier": self._notifier.name,
            "adapters": adapters,
        }
