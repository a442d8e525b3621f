"""
TCP health probe

Connects to the active candidate's probe address and closes the connection
straight away. Connection failures are the monitored signal, so they are
counted rather than raised.
"""

from __future__ import annotations

import asyncio

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog

if TYPE_CHECKING:
    from nvadaemon.core.pool import Candidate
    from nvadaemon.failover.state import FailoverState

logger = structlog.get_logger(__name__)

# Consecutive failures before the active candidate is considered unhealthy
FAILURE_THRESHOLD = 3

Connector = Callable[[str, int], Awaitable[tuple[Any, asyncio.StreamWriter]]]


class HealthProbe:
    """Single TCP reachability check with a consecutive-failure counter."""

    def __init__(
        self,
        port: int,
        timeout: float = 1.0,
        threshold: int = FAILURE_THRESHOLD,
        connector: Connector | None = None,
    ):
        """
        Initialize the probe.

        Args:
            port: TCP port probed on every candidate
            timeout: Connect timeout in seconds
            threshold: Consecutive failures that make a candidate unhealthy
            connector: Coroutine opening a connection, defaults to
                :func:`asyncio.open_connection`
        """
        self.port = port
        self.timeout = timeout
        self.threshold = threshold
        self._connect = connector or asyncio.open_connection

    async def check(self, candidate: Candidate, state: FailoverState) -> bool:
        """
        Probe ``candidate`` once and update ``state``.

        Returns:
            True while fewer than ``threshold`` consecutive probes have failed
        """
        state.last_probe = datetime.now(timezone.utc)
        try:
            _, writer = await asyncio.wait_for(
                self._connect(candidate.probe_address, self.port),
                timeout=self.timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            state.increment_failure()
            logger.info(
                "Probe failed",
                candidate=candidate.name,
                address=candidate.probe_address,
                port=self.port,
                failures=state.consecutive_failures,
                error=f"{e.__class__.__name__}: {e}",
            )
        else:
            await self._close(writer)
            if state.consecutive_failures:
                logger.info(
                    "Probe succeeded, resetting failures",
                    candidate=candidate.name,
                    previous_failures=state.consecutive_failures,
                )
            state.reset_failure_count()

        return state.consecutive_failures < self.threshold

    async def _close(self, writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug("Error closing probe connection", error=str(e))
