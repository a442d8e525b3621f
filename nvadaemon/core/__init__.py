"""
nvadaemon Core Module

Candidate pool, active index discovery and the error hierarchy.
"""

from .errors import (
    CloudError,
    ConfigurationError,
    ConsistencyError,
    MigrationError,
    MonitorStateError,
    NvaDaemonError,
    StartupError,
)
from .locator import CurrentIndexLocator
from .pool import Candidate, CandidatePool, OperatingMode, load_candidate_pool, resolve_operating_mode

__all__ = [
    "Candidate",
    "CandidatePool",
    "CloudError",
    "ConfigurationError",
    "ConsistencyError",
    "CurrentIndexLocator",
    "MigrationError",
    "MonitorStateError",
    "NvaDaemonError",
    "OperatingMode",
    "StartupError",
    "load_candidate_pool",
    "resolve_operating_mode",
]
