"""
nvadaemon Monitor Module

Probe monitor lifecycle and the scheduler that drives it.
"""

from .controller import MonitorPhase, ProbeMonitor
from .interfaces import ScheduledMonitor
from .scheduler import MonitorScheduler

__all__ = [
    "MonitorPhase",
    "MonitorScheduler",
    "ProbeMonitor",
    "ScheduledMonitor",
]
