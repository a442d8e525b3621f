"""
Fixed-interval scheduler for a :class:`ScheduledMonitor`
"""

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING

import structlog

from nvadaemon.core.errors import MigrationError

if TYPE_CHECKING:
    from nvadaemon.monitor.interfaces import ScheduledMonitor

logger = structlog.get_logger(__name__)


class MonitorScheduler:
    """Drives init, probe, execute and close in strict sequence."""

    def __init__(self, monitor: ScheduledMonitor, config: dict[str, str]):
        self.monitor = monitor
        self.config = config

        self._running = False
        self._stop_event = asyncio.Event()
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        if self._running:
            logger.info("Stopping monitor scheduler")
        self._stop_event.set()

    async def run(self) -> None:
        """
        Initialize the monitor and poll it until :meth:`stop` is called.

        Startup errors propagate. Migration errors are logged and the
        failover is retried on a later cycle. The monitor is closed exactly
        once on exit.
        """
        if self._running:
            logger.warning("Monitor scheduler already running")
            return

        self._running = True
        try:
            await self.monitor.init(self.config)
            interval = self.monitor.interval().total_seconds()
            logger.info("Monitor scheduler started", interval=interval)

            loop = asyncio.get_running_loop()
            while not self._stop_event.is_set():
                started = loop.time()
                await self._run_cycle()
                self.cycles += 1

                delay = max(0.0, interval - (loop.time() - started))
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            await self.monitor.close()
            logger.info("Monitor scheduler stopped", cycles=self.cycles)

    async def _run_cycle(self) -> None:
        if await self.monitor.probe():
            return

        try:
            await self.monitor.execute()
        except MigrationError as e:
            logger.error(
                "Failover attempt failed, retrying next cycle",
                error=f"{e.__class__.__name__}: {e}",
            )
