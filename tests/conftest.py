"""Pytest configuration and fixtures for nvadaemon tests."""
from __future__ import annotations

import socket
from typing import Any, Callable

import pytest

from nvadaemon.cloud.interfaces import Route
from nvadaemon.cloud.memory import InMemoryCloudNetwork
from nvadaemon.config.settings import DaemonSettings
from nvadaemon.failover.probe import HealthProbe
from nvadaemon.monitor.controller import ProbeMonitor

RESOURCE_GROUP = "nva-rg"


class FakeWriter:
    """Stands in for the StreamWriter of a successful probe connection."""

    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


class ScriptedConnector:
    """Connector whose outcomes are queued by the test.

    ``True`` connects, ``False`` raises ConnectionRefusedError. Once the
    script is exhausted every connect uses ``default``.
    """

    def __init__(self, default: bool = True) -> None:
        self.default = default
        self.outcomes: list[bool] = []
        self.targets: list[tuple[str, int]] = []

    def queue(self, *outcomes: bool) -> None:
        self.outcomes.extend(outcomes)

    async def __call__(self, host: str, port: int) -> tuple[Any, FakeWriter]:
        self.targets.append((host, port))
        healthy = self.outcomes.pop(0) if self.outcomes else self.default
        if not healthy:
            raise ConnectionRefusedError(f"Connection refused by {host}:{port}")
        return None, FakeWriter()


@pytest.fixture
def cloud() -> InMemoryCloudNetwork:
    """Three NVAs; the public IP and route both point at nva1."""
    fake = InMemoryCloudNetwork()
    for number in (1, 2, 3):
        fake.add_interface(RESOURCE_GROUP, f"nva{number}-untrust", f"10.0.1.{number}")
        fake.add_interface(RESOURCE_GROUP, f"nva{number}-trust", f"10.0.2.{number}")
        fake.add_interface(RESOURCE_GROUP, f"nva{number}-mgmt", f"10.0.3.{number}")

    fake.add_public_ip(RESOURCE_GROUP, "nva-pip", "52.0.0.10", assigned_interface="nva1-untrust")
    fake.add_route_table(
        RESOURCE_GROUP,
        "spoke-udr",
        [Route(name="default", address_prefix="0.0.0.0/0", next_hop_ip_address="10.0.2.1")],
    )
    return fake


@pytest.fixture
def config() -> dict[str, str]:
    """Flat configuration for three NVAs managing both the public IP and route."""
    flat = {
        "probe.resourceGroup": RESOURCE_GROUP,
        "probe.publicIpAddress": "nva-pip",
        "probe.routeTable": "spoke-udr",
        "probe.routeTableRoute": "default",
        "probe.port": "22",
        "probe.interval": "3000",
        "probe.connectTimeout": "500",
    }
    for number in (1, 2, 3):
        flat[f"probe.nva{number}.publicIpNetworkInterface"] = f"nva{number}-untrust"
        flat[f"probe.nva{number}.routeNetworkInterface"] = f"nva{number}-trust"
        flat[f"probe.nva{number}.probeNetworkInterface"] = f"nva{number}-mgmt"
    return flat


@pytest.fixture
def connector() -> ScriptedConnector:
    return ScriptedConnector()


@pytest.fixture
def make_monitor(
    cloud: InMemoryCloudNetwork, connector: ScriptedConnector
) -> Callable[[], ProbeMonitor]:
    """Factory for monitors wired to the in-memory cloud and scripted probe."""

    def factory() -> ProbeMonitor:
        def probe_factory(settings: DaemonSettings) -> HealthProbe:
            return HealthProbe(
                port=settings.probe.port,
                timeout=settings.probe.connect_timeout,
                connector=connector,
            )

        return ProbeMonitor(cloud_factory=lambda settings: cloud, probe_factory=probe_factory)

    return factory


@pytest.fixture
def unused_port() -> int:
    """A localhost port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
