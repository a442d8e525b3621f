"""Tests for the fixed-interval monitor scheduler."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from nvadaemon.core.errors import ConfigurationError, MigrationError
from nvadaemon.monitor.scheduler import MonitorScheduler


class FakeMonitor:
    """Records lifecycle calls and stops the scheduler after a set number of probes."""

    def __init__(self, probe_results: list[bool], execute_errors: list[Exception | None] | None = None):
        self.probe_results = list(probe_results)
        self.execute_errors = list(execute_errors or [])
        self.calls: list[str] = []
        self.scheduler: MonitorScheduler | None = None
        self.init_error: Exception | None = None

    async def init(self, config: dict[str, str]) -> None:
        self.calls.append("init")
        if self.init_error is not None:
            raise self.init_error

    async def probe(self) -> bool:
        self.calls.append("probe")
        healthy = self.probe_results.pop(0)
        if not self.probe_results and self.scheduler is not None:
            self.scheduler.stop()
        return healthy

    async def execute(self) -> None:
        self.calls.append("execute")
        error = self.execute_errors.pop(0) if self.execute_errors else None
        if error is not None:
            raise error

    def interval(self) -> timedelta:
        return timedelta(milliseconds=1)

    async def close(self) -> None:
        self.calls.append("close")


def _scheduler(monitor: FakeMonitor) -> MonitorScheduler:
    scheduler = MonitorScheduler(monitor, {"probe.port": "22"})
    monitor.scheduler = scheduler
    return scheduler


class TestMonitorScheduler:
    """Call ordering and error handling."""

    @pytest.mark.asyncio
    async def test_execute_only_after_unhealthy_probe(self):
        monitor = FakeMonitor([True, False, True])
        scheduler = _scheduler(monitor)

        await scheduler.run()

        assert monitor.calls == ["init", "probe", "probe", "execute", "probe", "close"]
        assert scheduler.cycles == 3
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_migration_error_is_retried_next_cycle(self):
        monitor = FakeMonitor([False, False], execute_errors=[MigrationError("attach failed"), None])
        scheduler = _scheduler(monitor)

        await scheduler.run()

        assert monitor.calls == ["init", "probe", "execute", "probe", "execute", "close"]

    @pytest.mark.asyncio
    async def test_startup_error_propagates_and_closes(self):
        monitor = FakeMonitor([True])
        monitor.init_error = ConfigurationError("probe.port is required")
        scheduler = _scheduler(monitor)

        with pytest.raises(ConfigurationError):
            await scheduler.run()

        assert monitor.calls == ["init", "close"]
        assert scheduler.cycles == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_stops_loop(self):
        monitor = FakeMonitor([False], execute_errors=[RuntimeError("bug")])
        scheduler = _scheduler(monitor)

        with pytest.raises(RuntimeError):
            await scheduler.run()

        assert monitor.calls[-1] == "close"
        assert monitor.calls.count("close") == 1

    @pytest.mark.asyncio
    async def test_stop_interrupts_wait(self):
        monitor = FakeMonitor([True] * 1000)
        monitor.interval = lambda: timedelta(seconds=60)
        scheduler = MonitorScheduler(monitor, {})

        task = asyncio.create_task(scheduler.run())
        while scheduler.cycles == 0:
            await asyncio.sleep(0)
        assert scheduler.running

        scheduler.stop()
        await asyncio.wait_for(task, timeout=1)

        assert scheduler.cycles == 1
        assert monitor.calls == ["init", "probe", "close"]

    @pytest.mark.asyncio
    async def test_second_run_is_ignored_while_running(self):
        monitor = FakeMonitor([True] * 1000)
        monitor.interval = lambda: timedelta(seconds=60)
        scheduler = MonitorScheduler(monitor, {})

        task = asyncio.create_task(scheduler.run())
        while scheduler.cycles == 0:
            await asyncio.sleep(0)

        await scheduler.run()
        scheduler.stop()
        await task

        assert monitor.calls.count("init") == 1
