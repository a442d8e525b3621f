"""
Probe monitor

Ties the candidate pool, the active-index locator, the health probe and the
failover executor into the lifecycle driven by :class:`MonitorScheduler`.

The monitor keeps its failover state without locking. It must be driven by
one task with non-overlapping calls; calling ``probe`` or ``execute`` from
several tasks or threads at once is not supported.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog

from nvadaemon.cloud.azure import AzureNetworkClient
from nvadaemon.config.settings import DaemonSettings
from nvadaemon.core.errors import ConfigurationError, MigrationError, MonitorStateError
from nvadaemon.core.locator import CurrentIndexLocator
from nvadaemon.core.pool import load_candidate_pool
from nvadaemon.failover.executor import FailoverExecutor
from nvadaemon.failover.probe import HealthProbe
from nvadaemon.failover.state import FailoverState, MonitorEvent

if TYPE_CHECKING:
    from nvadaemon.cloud.interfaces import CloudNetwork
    from nvadaemon.core.pool import Candidate, CandidatePool

logger = structlog.get_logger(__name__)

DEFAULT_INTERVAL = timedelta(milliseconds=3000)
DEFAULT_CLOSE_TIMEOUT = 5.0

CloudFactory = Callable[[DaemonSettings], "CloudNetwork"]
EventHandler = Callable[..., Awaitable[None]]


class MonitorPhase(str, Enum):
    """Lifecycle phases of the probe monitor."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    PROBING = "probing"
    MIGRATING = "migrating"
    CLOSED = "closed"


def azure_cloud_factory(settings: DaemonSettings) -> CloudNetwork:
    """Build the ARM client from the ``azure.*`` settings."""
    if settings.azure is None:
        raise ConfigurationError(
            "azure.clientId, azure.tenantId, azure.clientSecret and "
            "azure.subscriptionId are required"
        )
    return AzureNetworkClient.from_settings(settings.azure)


class ProbeMonitor:
    """Health-checks the active NVA and fails over to the next one."""

    def __init__(
        self,
        cloud_factory: CloudFactory = azure_cloud_factory,
        probe_factory: Callable[[DaemonSettings], HealthProbe] | None = None,
    ):
        """
        Initialize the monitor.

        Args:
            cloud_factory: Builds the cloud networking client from settings
            probe_factory: Builds the health probe, defaults to a TCP probe
                on ``probe.port`` with ``probe.connectTimeout``
        """
        self._cloud_factory = cloud_factory
        self._probe_factory = probe_factory or _default_probe

        self.phase = MonitorPhase.UNINITIALIZED
        self.settings: DaemonSettings | None = None
        self.pool: CandidatePool | None = None
        self.state = FailoverState()

        self._cloud: CloudNetwork | None = None
        self._probe: HealthProbe | None = None
        self._executor: FailoverExecutor | None = None
        self._last_probe_healthy: bool | None = None
        self.event_handlers: dict[MonitorEvent, list[EventHandler]] = {}

    def _require(self, *phases: MonitorPhase) -> None:
        if self.phase not in phases:
            raise MonitorStateError(
                f"Operation not allowed in phase {self.phase.value}"
            )

    @property
    def active_candidate(self) -> Candidate:
        self._require(MonitorPhase.READY, MonitorPhase.PROBING, MonitorPhase.MIGRATING)
        if self.pool is None:
            raise MonitorStateError("Probe monitor has no candidate pool")
        return self.pool[self.state.active_index]

    def add_event_handler(self, event: MonitorEvent, handler: EventHandler) -> None:
        """Add a coroutine called as ``handler(candidate, **details)`` on ``event``."""
        self.event_handlers.setdefault(event, []).append(handler)

    async def _emit_event(self, event: MonitorEvent, candidate: Candidate, **kwargs: Any) -> None:
        for handler in self.event_handlers.get(event, []):
            try:
                await handler(candidate, **kwargs)
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    event=event.value,
                    error=f"{e.__class__.__name__}: {e}",
                )

    async def init(self, config: dict[str, str]) -> None:
        """
        Load configuration, build the pool and locate the active NVA.

        Raises:
            StartupError: The monitor cannot start; it stays uninitialized
        """
        self._require(MonitorPhase.UNINITIALIZED)

        settings = DaemonSettings.from_config(config)
        cloud = self._cloud_factory(settings)
        try:
            pool = await load_candidate_pool(config, cloud, settings.probe.resource_group)
            active_index = await CurrentIndexLocator(cloud, settings.probe).locate(pool)
        except Exception:
            await cloud.close(_close_timeout(settings))
            raise

        self.settings = settings
        self.pool = pool
        self.state = FailoverState(active_index=active_index)
        self._cloud = cloud
        self._probe = self._probe_factory(settings)
        self._executor = FailoverExecutor(cloud, settings.probe)
        self.phase = MonitorPhase.READY

        logger.info(
            "Probe monitor initialized",
            mode=pool.mode.value,
            candidates=[candidate.name for candidate in pool],
            active_nva=pool[active_index].name,
        )

    async def probe(self) -> bool:
        """
        Probe the active NVA once.

        Returns:
            False once the failure threshold is reached, or while a previous
            migration is still incomplete
        """
        self._require(MonitorPhase.READY, MonitorPhase.PROBING)
        if self._probe is None:
            raise MonitorStateError("Probe monitor has no health probe")
        self.phase = MonitorPhase.PROBING
        candidate = self.active_candidate

        if self.state.migration_pending:
            logger.warning(
                "Previous migration incomplete, requesting failover",
                active_nva=candidate.name,
                pending_index=self.state.pending_index,
            )
            self._last_probe_healthy = False
            return False

        previous_failures = self.state.consecutive_failures
        healthy = await self._probe.check(candidate, self.state)
        self._last_probe_healthy = healthy

        if not healthy:
            logger.warning(
                "Active NVA unhealthy",
                active_nva=candidate.name,
                failures=self.state.consecutive_failures,
            )
            await self._emit_event(
                MonitorEvent.NVA_UNHEALTHY,
                candidate,
                failures=self.state.consecutive_failures,
            )
        elif self.state.consecutive_failures > previous_failures:
            await self._emit_event(
                MonitorEvent.PROBE_FAILED,
                candidate,
                failures=self.state.consecutive_failures,
            )
        elif previous_failures:
            await self._emit_event(MonitorEvent.NVA_RECOVERED, candidate)

        return healthy

    async def execute(self) -> None:
        """
        Fail over to the next NVA.

        Raises:
            MigrationError: The migration did not complete; the active index
                is unchanged and the next ``probe`` requests another attempt
        """
        self._require(MonitorPhase.PROBING)
        if self._last_probe_healthy is not False:
            raise MonitorStateError("execute() requires an unhealthy probe result")
        if self._executor is None or self.pool is None:
            raise MonitorStateError("Probe monitor has no failover executor")

        source = self.active_candidate
        logger.info("Probe failure. Executing failover.", active_nva=source.name)
        await self._emit_event(MonitorEvent.FAILOVER_TRIGGERED, source)

        self.phase = MonitorPhase.MIGRATING
        try:
            await self._executor.migrate(self.pool, self.state)
        except MigrationError as e:
            logger.error(
                "Failover failed",
                active_nva=source.name,
                error=f"{e.__class__.__name__}: {e}",
            )
            await self._emit_event(MonitorEvent.FAILOVER_FAILED, source, error=str(e))
            raise
        finally:
            self.phase = MonitorPhase.PROBING

        self._last_probe_healthy = None
        await self._emit_event(
            MonitorEvent.FAILOVER_COMPLETED,
            self.active_candidate,
            previous=source.name,
        )

    def interval(self) -> timedelta:
        """Polling period between two probes."""
        if self.settings is None:
            return DEFAULT_INTERVAL
        return self.settings.probe.interval

    async def close(self) -> None:
        """
        Release the cloud client.

        In-flight cloud calls get ``azure.closeTimeout`` seconds to finish
        before they are cancelled. Single-shot: a second call raises.
        """
        if self.phase == MonitorPhase.CLOSED:
            raise MonitorStateError("Probe monitor already closed")

        self.phase = MonitorPhase.CLOSED
        if self._cloud is not None:
            await self._cloud.close(_close_timeout(self.settings))
            self._cloud = None
        logger.info("Probe monitor closed")

    def get_status(self) -> dict[str, Any]:
        """Snapshot of the monitor for logging and diagnostics."""
        status: dict[str, Any] = {
            "phase": self.phase.value,
            "active_index": self.state.active_index,
            "consecutive_failures": self.state.consecutive_failures,
            "pending_index": self.state.pending_index,
            "failover_count": self.state.failover_count,
            "last_failover": self.state.last_failover.isoformat()
            if self.state.last_failover
            else None,
            "last_probe": self.state.last_probe.isoformat()
            if self.state.last_probe
            else None,
        }
        if self.pool is not None:
            status["mode"] = self.pool.mode.value
            status["candidates"] = [candidate.name for candidate in self.pool]
            status["active_nva"] = self.pool[self.state.active_index].name
        return status


def _default_probe(settings: DaemonSettings) -> HealthProbe:
    return HealthProbe(
        port=settings.probe.port,
        timeout=settings.probe.connect_timeout,
    )


def _close_timeout(settings: DaemonSettings | None) -> float:
    if settings is None or settings.azure is None:
        return DEFAULT_CLOSE_TIMEOUT
    return settings.azure.close_timeout
