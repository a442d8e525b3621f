"""
Failover state and events

The state is owned by a single monitor and is only touched from the task
that drives it; it carries no locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class MonitorEvent(str, Enum):
    """Events emitted by the probe monitor."""

    PROBE_FAILED = "probe_failed"
    NVA_UNHEALTHY = "nva_unhealthy"
    NVA_RECOVERED = "nva_recovered"
    FAILOVER_TRIGGERED = "failover_triggered"
    FAILOVER_COMPLETED = "failover_completed"
    FAILOVER_FAILED = "failover_failed"


@dataclass
class FailoverState:
    """Active pool index and the consecutive probe failure counter."""

    active_index: int = 0
    consecutive_failures: int = 0
    # Target of a migration that started but did not complete
    pending_index: int | None = None
    failover_count: int = 0
    last_failover: datetime | None = None
    last_probe: datetime | None = None

    def reset_failure_count(self) -> None:
        """Reset the failure counter after a successful probe."""
        self.consecutive_failures = 0

    def increment_failure(self) -> None:
        """Increment the failure counter."""
        self.consecutive_failures += 1

    def complete_migration(self, next_index: int) -> None:
        """Advance to ``next_index`` once every floating resource has moved."""
        self.active_index = next_index
        self.consecutive_failures = 0
        self.pending_index = None
        self.failover_count += 1
        self.last_failover = datetime.now(timezone.utc)

    def mark_pending(self, next_index: int) -> None:
        self.pending_index = next_index

    @property
    def migration_pending(self) -> bool:
        return self.pending_index is not None
