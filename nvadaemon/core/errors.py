"""
Exception hierarchy for nvadaemon

Startup errors abort ``init`` and keep the monitor out of the ready state.
Migration errors are raised from ``execute`` and retried on the next cycle.
"""

from __future__ import annotations


class NvaDaemonError(Exception):
    """Base class for all nvadaemon errors."""


class StartupError(NvaDaemonError):
    """Fatal error raised while initializing the monitor."""


class ConfigurationError(StartupError):
    """Configuration is missing or inconsistent with the operating mode."""


class ConsistencyError(StartupError):
    """Live cloud state does not identify a single active candidate."""


class CloudError(NvaDaemonError):
    """A cloud control-plane call failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class MigrationError(NvaDaemonError):
    """Moving the floating resources to the next candidate failed."""


class MonitorStateError(NvaDaemonError):
    """A lifecycle operation was called in the wrong state."""
