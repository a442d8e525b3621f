"""
Lifecycle contract between a scheduled monitor and the scheduler driving it
"""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol, runtime_checkable


@runtime_checkable
class ScheduledMonitor(Protocol):
    """A monitor driven on a fixed interval by an external scheduler.

    The scheduler calls ``init`` once, then ``probe`` every ``interval()``,
    ``execute`` whenever ``probe`` returns False, and ``close`` once at
    shutdown. Calls never overlap; implementations rely on that and are not
    safe to drive from several tasks or threads at once.
    """

    async def init(self, config: dict[str, str]) -> None: ...

    async def probe(self) -> bool: ...

    async def execute(self) -> None: ...

    def interval(self) -> timedelta: ...

    async def close(self) -> None: ...
