"""
nvadaemon Failover Module

Provides the TCP health probe and the floating resource migration.
"""

from .executor import FailoverExecutor
from .probe import FAILURE_THRESHOLD, HealthProbe
from .state import FailoverState, MonitorEvent

__all__ = [
    "FAILURE_THRESHOLD",
    "FailoverExecutor",
    "FailoverState",
    "HealthProbe",
    "MonitorEvent",
]
