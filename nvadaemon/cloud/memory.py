"""
In-memory cloud networking

Keeps interfaces, public addresses and route tables in dictionaries so the
failover core can run without a control plane, with failures injectable per
operation. Used by the test suite.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import structlog

from nvadaemon.cloud.interfaces import (
    NetworkInterface,
    PublicIpAddress,
    Route,
    RouteTable,
)
from nvadaemon.core.errors import CloudError

logger = structlog.get_logger(__name__)


class InMemoryCloudNetwork:
    """Dictionary-backed implementation of :class:`CloudNetwork`."""

    def __init__(self) -> None:
        self.interfaces: dict[tuple[str, str], NetworkInterface] = {}
        self.public_ips: dict[tuple[str, str], PublicIpAddress] = {}
        self.route_tables: dict[tuple[str, str], RouteTable] = {}

        # Operation name -> exception raised on the next call
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.closed = False

    # Seeding helpers

    def add_interface(
        self, resource_group: str, name: str, private_ip: str
    ) -> NetworkInterface:
        nic = NetworkInterface(
            name=name,
            resource_group=resource_group,
            primary_private_ip=private_ip,
            id=f"/resourceGroups/{resource_group}/networkInterfaces/{name}",
        )
        self.interfaces[(resource_group, name)] = nic
        return nic

    def add_public_ip(
        self,
        resource_group: str,
        name: str,
        ip_address: str,
        assigned_interface: str | None = None,
    ) -> PublicIpAddress:
        public_ip = PublicIpAddress(
            name=name,
            resource_group=resource_group,
            ip_address=ip_address,
            id=f"/resourceGroups/{resource_group}/publicIPAddresses/{name}",
        )
        self.public_ips[(resource_group, name)] = public_ip
        if assigned_interface is not None:
            self._assign(resource_group, assigned_interface, public_ip)
        return self.public_ips[(resource_group, name)]

    def add_route_table(
        self, resource_group: str, name: str, routes: list[Route] | None = None
    ) -> RouteTable:
        table = RouteTable(
            name=name,
            resource_group=resource_group,
            routes={route.name: route for route in routes or []},
            id=f"/resourceGroups/{resource_group}/routeTables/{name}",
        )
        self.route_tables[(resource_group, name)] = table
        return table

    def fail_next(self, operation: str, error: Exception | None = None) -> None:
        """Make the next call to ``operation`` raise ``error``."""
        self.failures[operation] = error or CloudError(f"{operation} failed", status=500)

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        error = self.failures.pop(operation, None)
        if error is not None:
            logger.debug("Injected cloud failure", operation=operation, error=str(error))
            raise error

    def _assign(
        self, resource_group: str, interface_name: str, public_ip: PublicIpAddress | None
    ) -> None:
        nic = self.interfaces.get((resource_group, interface_name))
        if nic is None:
            raise CloudError(f"Network interface {interface_name} not found", status=404)

        if public_ip is None:
            holder_of = self._public_ip_by_id(nic.public_ip_id)
            self.interfaces[(resource_group, interface_name)] = replace(nic, public_ip_id=None)
            if holder_of is not None:
                self.public_ips[(holder_of.resource_group, holder_of.name)] = replace(
                    holder_of, assigned_interface=None, assigned_resource_group=None
                )
            return

        current = self.public_ips[(public_ip.resource_group, public_ip.name)]
        if current.assigned_interface is not None and (
            current.assigned_resource_group,
            current.assigned_interface,
        ) != (resource_group, interface_name):
            raise CloudError(
                f"Public IP {public_ip.name} is already assigned to "
                f"{current.assigned_interface}",
                status=400,
            )

        self.interfaces[(resource_group, interface_name)] = replace(
            nic, public_ip_id=current.id
        )
        self.public_ips[(public_ip.resource_group, public_ip.name)] = replace(
            current,
            assigned_interface=interface_name,
            assigned_resource_group=resource_group,
        )

    def _public_ip_by_id(self, public_ip_id: str | None) -> PublicIpAddress | None:
        if public_ip_id is None:
            return None
        for public_ip in self.public_ips.values():
            if public_ip.id == public_ip_id:
                return public_ip
        return None

    # CloudNetwork

    async def get_network_interface(
        self, resource_group: str, name: str
    ) -> NetworkInterface | None:
        self._record("get_network_interface", resource_group, name)
        return self.interfaces.get((resource_group, name))

    async def get_public_ip_address(
        self, resource_group: str, name: str
    ) -> PublicIpAddress | None:
        self._record("get_public_ip_address", resource_group, name)
        return self.public_ips.get((resource_group, name))

    async def get_public_ip_holder(
        self, public_ip: PublicIpAddress
    ) -> NetworkInterface | None:
        self._record("get_public_ip_holder", public_ip.name)
        current = self.public_ips.get((public_ip.resource_group, public_ip.name))
        if current is None or current.assigned_interface is None:
            return None
        return self.interfaces.get(
            (current.assigned_resource_group, current.assigned_interface)
        )

    async def detach_public_ip(self, resource_group: str, interface_name: str) -> None:
        self._record("detach_public_ip", resource_group, interface_name)
        self._assign(resource_group, interface_name, None)

    async def attach_public_ip(
        self, resource_group: str, interface_name: str, public_ip: PublicIpAddress
    ) -> None:
        self._record("attach_public_ip", resource_group, interface_name, public_ip.name)
        self._assign(resource_group, interface_name, public_ip)

    async def get_route_table(
        self, resource_group: str, name: str
    ) -> RouteTable | None:
        self._record("get_route_table", resource_group, name)
        return self.route_tables.get((resource_group, name))

    async def get_route(self, route_table: RouteTable, name: str) -> Route | None:
        self._record("get_route", route_table.name, name)
        current = self.route_tables.get((route_table.resource_group, route_table.name))
        if current is None:
            return None
        return current.routes.get(name)

    async def update_route_next_hop(
        self,
        resource_group: str,
        route_table_name: str,
        route_name: str,
        next_hop_ip_address: str,
    ) -> None:
        self._record(
            "update_route_next_hop",
            resource_group,
            route_table_name,
            route_name,
            next_hop_ip_address,
        )
        table = self.route_tables.get((resource_group, route_table_name))
        if table is None or route_name not in table.routes:
            raise CloudError(
                f"Route {route_table_name}/{route_name} not found", status=404
            )

        routes = dict(table.routes)
        routes[route_name] = replace(
            routes[route_name],
            next_hop_type="VirtualAppliance",
            next_hop_ip_address=next_hop_ip_address,
        )
        self.route_tables[(resource_group, route_table_name)] = replace(table, routes=routes)

    async def close(self, grace_period: float = 5.0) -> None:
        self.closed = True
