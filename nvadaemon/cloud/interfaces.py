"""
Cloud networking capability used by the failover core

Only the handful of control-plane operations the monitor needs are exposed.
Lookups return ``None`` for resources that do not exist; every other failure
raises :class:`~nvadaemon.core.errors.CloudError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class NetworkInterface:
    """A network interface and the addresses on its primary IP configuration."""

    name: str
    resource_group: str
    primary_private_ip: str | None = None
    public_ip_id: str | None = None
    id: str | None = None


@dataclass(frozen=True)
class PublicIpAddress:
    """A floating public address and the interface currently holding it."""

    name: str
    resource_group: str
    ip_address: str | None = None
    assigned_interface: str | None = None
    assigned_resource_group: str | None = None
    id: str | None = None

    def has_assigned_interface(self) -> bool:
        return self.assigned_interface is not None


@dataclass(frozen=True)
class Route:
    """A single route entry of a route table."""

    name: str
    address_prefix: str | None = None
    next_hop_type: str = "VirtualAppliance"
    next_hop_ip_address: str | None = None


@dataclass(frozen=True)
class RouteTable:
    """A route table and its routes keyed by name."""

    name: str
    resource_group: str
    routes: dict[str, Route] = field(default_factory=dict)
    id: str | None = None


@runtime_checkable
class CloudNetwork(Protocol):
    """Control-plane operations the failover core depends on."""

    async def get_network_interface(
        self, resource_group: str, name: str
    ) -> NetworkInterface | None: ...

    async def get_public_ip_address(
        self, resource_group: str, name: str
    ) -> PublicIpAddress | None: ...

    async def get_public_ip_holder(
        self, public_ip: PublicIpAddress
    ) -> NetworkInterface | None: ...

    async def detach_public_ip(self, resource_group: str, interface_name: str) -> None: ...

    async def attach_public_ip(
        self, resource_group: str, interface_name: str, public_ip: PublicIpAddress
    ) -> None: ...

    async def get_route_table(
        self, resource_group: str, name: str
    ) -> RouteTable | None: ...

    async def get_route(self, route_table: RouteTable, name: str) -> Route | None: ...

    async def update_route_next_hop(
        self,
        resource_group: str,
        route_table_name: str,
        route_name: str,
        next_hop_ip_address: str,
    ) -> None: ...

    async def close(self, grace_period: float = 5.0) -> None: ...
