"""
Active candidate discovery

Works out which pool member currently holds the floating resources by
reading live cloud state. When both the public IP and the route are managed
they must point at the same candidate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from nvadaemon.core.errors import CloudError, ConfigurationError, ConsistencyError, StartupError

if TYPE_CHECKING:
    from nvadaemon.cloud.interfaces import CloudNetwork
    from nvadaemon.config.settings import ProbeSettings
    from nvadaemon.core.pool import CandidatePool

logger = structlog.get_logger(__name__)


class CurrentIndexLocator:
    """Derives the active pool index from cloud state."""

    def __init__(self, cloud: CloudNetwork, settings: ProbeSettings):
        self.cloud = cloud
        self.settings = settings

    async def locate(self, pool: CandidatePool) -> int:
        """
        Return the index of the active candidate.

        Args:
            pool: Validated candidate pool

        Returns:
            Index agreed on by every managed resource

        Raises:
            ConfigurationError: A resource name required by the mode is missing
            ConsistencyError: A resource is missing or unassigned, points
                outside the pool, or the public IP and route disagree
            StartupError: A cloud call failed
        """
        try:
            public_ip_index = (
                await self._locate_by_public_ip(pool) if pool.mode.manages_public_ip else None
            )
            route_index = (
                await self._locate_by_route(pool) if pool.mode.manages_route else None
            )
        except CloudError as e:
            raise StartupError(
                f"Cloud error while locating the active NVA: {e}"
            ) from e

        if public_ip_index is not None and route_index is not None:
            if public_ip_index != route_index:
                raise ConsistencyError(
                    "Current public IP and route point to different NVAs: "
                    f"public IP -> {pool[public_ip_index].name}, "
                    f"route -> {pool[route_index].name}"
                )

        index = public_ip_index if public_ip_index is not None else route_index
        if index is None:
            raise ConsistencyError(
                f"No managed resource identifies the active NVA in {pool.mode.value} mode"
            )
        logger.info(
            "Located active NVA",
            candidate=pool[index].name,
            index=index,
            mode=pool.mode.value,
        )
        return index

    async def _locate_by_public_ip(self, pool: CandidatePool) -> int:
        name = self.settings.public_ip_address
        if not name:
            raise ConfigurationError(
                f"probe.publicIpAddress is required in {pool.mode.value} mode"
            )

        public_ip = await self.cloud.get_public_ip_address(self.settings.resource_group, name)
        if public_ip is None:
            raise ConsistencyError(f"Public IP address {name} was not found")
        if not public_ip.has_assigned_interface():
            raise ConsistencyError(
                f"Public IP address {name} is not assigned to a network interface"
            )

        holder = await self.cloud.get_public_ip_holder(public_ip)
        holder_name = holder.name if holder is not None else public_ip.assigned_interface
        logger.debug("Public IP holder", public_ip=name, interface=holder_name)

        index = pool.index_of_public_ip_interface(holder_name)
        if index is None:
            raise ConsistencyError(
                f"Network interface {holder_name} holding {name} is not "
                "in the list of valid network interfaces"
            )

        return index

    async def _locate_by_route(self, pool: CandidatePool) -> int:
        table_name = self.settings.route_table
        route_name = self.settings.route_table_route
        if not table_name or not route_name:
            raise ConfigurationError(
                f"probe.routeTable and probe.routeTableRoute are required in "
                f"{pool.mode.value} mode"
            )

        route_table = await self.cloud.get_route_table(self.settings.resource_group, table_name)
        if route_table is None:
            raise ConsistencyError(f"Route table {table_name} was not found")

        route = await self.cloud.get_route(route_table, route_name)
        if route is None:
            raise ConsistencyError(f"Route {route_name} was not found in {table_name}")
        if not route.next_hop_ip_address:
            raise ConsistencyError(f"Route {route_name} has no next hop address")

        for candidate in pool:
            nic = await self.cloud.get_network_interface(
                self.settings.resource_group, candidate.route_interface
            )
            if nic is None:
                raise ConsistencyError(
                    f"Route interface {candidate.route_interface} of "
                    f"{candidate.name} was not found"
                )
            if nic.primary_private_ip == route.next_hop_ip_address:
                return candidate.index

        raise ConsistencyError(
            f"Next hop {route.next_hop_ip_address} of route {route_name} does not "
            "belong to any configured route interface"
        )
