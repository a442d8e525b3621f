"""
Failover executor

Moves the floating public IP and/or the route next hop from the active
candidate to the next one in round-robin order.
"""

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING

import structlog

from nvadaemon.core.errors import CloudError, MigrationError

if TYPE_CHECKING:
    from nvadaemon.cloud.interfaces import CloudNetwork
    from nvadaemon.config.settings import ProbeSettings
    from nvadaemon.core.pool import Candidate, CandidatePool
    from nvadaemon.failover.state import FailoverState

logger = structlog.get_logger(__name__)


class FailoverExecutor:
    """Migrates floating resources to the next candidate."""

    def __init__(self, cloud: CloudNetwork, settings: ProbeSettings, timeout: float | None = None):
        self.cloud = cloud
        self.settings = settings
        self.timeout = timeout if timeout is not None else settings.migration_timeout

    async def migrate(self, pool: CandidatePool, state: FailoverState) -> None:
        """
        Move the floating resources from the active candidate to the next one.

        The active index and failure counter only advance once every managed
        resource has moved. On failure the target is remembered in
        ``state.pending_index`` and the next call resumes from current cloud
        state, skipping steps that already took effect.

        Raises:
            MigrationError: A cloud call failed or the migration timed out
        """
        next_index = pool.next_index(state.active_index)
        source = pool[state.active_index]
        target = pool[next_index]

        logger.info(
            "Migrating floating resources",
            from_nva=source.name,
            to_nva=target.name,
            mode=pool.mode.value,
            resumed=state.pending_index == next_index,
        )
        state.mark_pending(next_index)

        try:
            await asyncio.wait_for(
                self._migrate(pool, source, target), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise MigrationError(
                f"Migration from {source.name} to {target.name} timed out "
                f"after {self.timeout:g}s"
            ) from e
        except CloudError as e:
            raise MigrationError(
                f"Migration from {source.name} to {target.name} failed: {e}"
            ) from e

        state.complete_migration(next_index)
        logger.info("Migration completed", active_nva=target.name, index=next_index)

    async def _migrate(
        self, pool: CandidatePool, source: Candidate, target: Candidate
    ) -> None:
        if pool.mode.manages_public_ip:
            await self._migrate_public_ip(source, target)
        if pool.mode.manages_route:
            await self._migrate_route(target)

    async def _migrate_public_ip(self, source: Candidate, target: Candidate) -> None:
        resource_group = self.settings.resource_group
        name = self.settings.public_ip_address

        public_ip = await self.cloud.get_public_ip_address(resource_group, name)
        if public_ip is None:
            raise CloudError(f"Public IP address {name} was not found", status=404)

        holder = await self.cloud.get_public_ip_holder(public_ip)
        holder_name = holder.name if holder is not None else None

        if holder_name == target.public_ip_interface:
            logger.info(
                "Public IP already on target interface",
                public_ip=name,
                interface=holder_name,
            )
            return

        if holder_name is not None:
            if holder_name != source.public_ip_interface:
                logger.warning(
                    "Public IP held by unexpected interface",
                    public_ip=name,
                    interface=holder_name,
                    expected=source.public_ip_interface,
                )
            logger.debug("Removing public IP", public_ip=name, interface=holder_name)
            await self.cloud.detach_public_ip(resource_group, holder_name)
            logger.debug("Public IP removed", public_ip=name, interface=holder_name)

        # Until the attach succeeds the address is not reachable on any interface
        logger.debug(
            "Adding public IP", public_ip=name, interface=target.public_ip_interface
        )
        await self.cloud.attach_public_ip(
            resource_group, target.public_ip_interface, public_ip
        )
        logger.debug(
            "Public IP added", public_ip=name, interface=target.public_ip_interface
        )

    async def _migrate_route(self, target: Candidate) -> None:
        resource_group = self.settings.resource_group

        nic = await self.cloud.get_network_interface(resource_group, target.route_interface)
        if nic is None or not nic.primary_private_ip:
            raise CloudError(
                f"Route interface {target.route_interface} has no private IP address",
                status=404,
            )

        logger.debug(
            "Updating route",
            route=self.settings.route_table_route,
            next_hop=nic.primary_private_ip,
        )
        await self.cloud.update_route_next_hop(
            resource_group,
            self.settings.route_table,
            self.settings.route_table_route,
            nic.primary_private_ip,
        )
        logger.debug(
            "Route updated",
            route=self.settings.route_table_route,
            next_hop=nic.primary_private_ip,
        )
