"""
Candidate pool for nvadaemon

Builds the ordered, validated list of network virtual appliances from the
``probe.nva<N>.*`` configuration keys and decides which floating resources
(public IP, route, or both) the deployment manages.
"""

from __future__ import annotations

import re

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterator

import structlog

from nvadaemon.core.errors import CloudError, ConfigurationError

if TYPE_CHECKING:
    from nvadaemon.cloud.interfaces import CloudNetwork

logger = structlog.get_logger(__name__)

PUBLIC_IP_INTERFACE_KEY = "publicIpNetworkInterface"
ROUTE_INTERFACE_KEY = "routeNetworkInterface"
PROBE_INTERFACE_KEY = "probeNetworkInterface"

_CANDIDATE_KEY_PATTERN = re.compile(r"^(?P<prefix>probe\.nva(?P<number>\d+))\.[^.]+$")


class OperatingMode(str, Enum):
    """Floating resources managed by the deployment."""

    PIP_AND_ROUTE = "pip_and_route"
    PIP_ONLY = "pip_only"
    ROUTE_ONLY = "route_only"

    @property
    def manages_public_ip(self) -> bool:
        return self in (OperatingMode.PIP_AND_ROUTE, OperatingMode.PIP_ONLY)

    @property
    def manages_route(self) -> bool:
        return self in (OperatingMode.PIP_AND_ROUTE, OperatingMode.ROUTE_ONLY)


@dataclass(frozen=True)
class Candidate:
    """One appliance of the failover pool."""

    index: int
    name: str
    probe_interface: str
    probe_address: str
    public_ip_interface: str | None = None
    route_interface: str | None = None


class CandidatePool:
    """Immutable, ordered pool of candidates sharing one operating mode."""

    def __init__(self, candidates: list[Candidate], mode: OperatingMode):
        if not candidates:
            raise ConfigurationError("Candidate pool cannot be empty")
        self._candidates: tuple[Candidate, ...] = tuple(candidates)
        self.mode = mode

    def __len__(self) -> int:
        return len(self._candidates)

    def __getitem__(self, index: int) -> Candidate:
        return self._candidates[index]

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._candidates)

    def next_index(self, index: int) -> int:
        """Round-robin successor of ``index``."""
        return (index + 1) % len(self._candidates)

    def index_of_public_ip_interface(self, name: str) -> int | None:
        for candidate in self._candidates:
            if candidate.public_ip_interface == name:
                return candidate.index
        return None


def _present(config: dict[str, str], key: str) -> str | None:
    value = config.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def resolve_operating_mode(config: dict[str, str], prefix: str) -> OperatingMode:
    """Decide the operating mode from the first candidate's interface keys.

    Args:
        config: Flat configuration mapping
        prefix: Key prefix of the first candidate, e.g. ``probe.nva1``

    Raises:
        ConfigurationError: Neither a public IP nor a route interface is declared
    """
    has_public_ip = _present(config, f"{prefix}.{PUBLIC_IP_INTERFACE_KEY}") is not None
    has_route = _present(config, f"{prefix}.{ROUTE_INTERFACE_KEY}") is not None

    if has_public_ip and has_route:
        return OperatingMode.PIP_AND_ROUTE
    if has_public_ip:
        return OperatingMode.PIP_ONLY
    if has_route:
        return OperatingMode.ROUTE_ONLY
    raise ConfigurationError(
        f"No failover path declared for {prefix}: set {PUBLIC_IP_INTERFACE_KEY} "
        f"and/or {ROUTE_INTERFACE_KEY}"
    )


def candidate_prefixes(config: dict[str, str]) -> list[str]:
    """Return the distinct candidate prefixes ordered by their numeric suffix.

    Raises:
        ConfigurationError: Two prefixes share the same number (``nva1``/``nva01``)
    """
    by_number: dict[int, str] = {}
    for key in config:
        match = _CANDIDATE_KEY_PATTERN.match(key)
        if not match:
            continue

        prefix = match.group("prefix")
        number = int(match.group("number"))
        existing = by_number.setdefault(number, prefix)
        if existing != prefix:
            raise ConfigurationError(
                f"Candidate prefixes {existing} and {prefix} refer to the same index"
            )

    return [by_number[number] for number in sorted(by_number)]


async def load_candidate_pool(
    config: dict[str, str], cloud: CloudNetwork, resource_group: str
) -> CandidatePool:
    """Build and validate the candidate pool.

    Every probe interface is resolved through the cloud so the probe address
    is known before the monitor starts.

    Args:
        config: Flat configuration mapping
        cloud: Cloud networking capability
        resource_group: Resource group holding the interfaces

    Returns:
        Validated candidate pool

    Raises:
        ConfigurationError: No candidates, a missing reference for the mode,
            or a probe interface that cannot be resolved
    """
    prefixes = candidate_prefixes(config)
    if not prefixes:
        raise ConfigurationError("No NVA configuration entries found")

    mode = resolve_operating_mode(config, prefixes[0])
    logger.info("Resolved operating mode", mode=mode.value, candidates=len(prefixes))

    candidates: list[Candidate] = []
    for index, prefix in enumerate(prefixes):
        public_ip_interface = _present(config, f"{prefix}.{PUBLIC_IP_INTERFACE_KEY}")
        route_interface = _present(config, f"{prefix}.{ROUTE_INTERFACE_KEY}")
        probe_interface = _present(config, f"{prefix}.{PROBE_INTERFACE_KEY}")

        if probe_interface is None:
            raise ConfigurationError(f"{prefix}.{PROBE_INTERFACE_KEY} is required")
        if mode.manages_public_ip and public_ip_interface is None:
            raise ConfigurationError(
                f"{prefix}.{PUBLIC_IP_INTERFACE_KEY} is required in {mode.value} mode"
            )
        if mode.manages_route and route_interface is None:
            raise ConfigurationError(
                f"{prefix}.{ROUTE_INTERFACE_KEY} is required in {mode.value} mode"
            )

        try:
            nic = await cloud.get_network_interface(resource_group, probe_interface)
        except CloudError as e:
            raise ConfigurationError(
                f"Cannot resolve probe interface {probe_interface}: {e}"
            ) from e
        if nic is None:
            raise ConfigurationError(f"Probe interface {probe_interface} was not found")
        if not nic.primary_private_ip:
            raise ConfigurationError(
                f"Probe interface {probe_interface} has no private IP address"
            )

        candidate = Candidate(
            index=index,
            name=prefix[len("probe."):],
            probe_interface=probe_interface,
            probe_address=nic.primary_private_ip,
            public_ip_interface=public_ip_interface if mode.manages_public_ip else None,
            route_interface=route_interface if mode.manages_route else None,
        )
        candidates.append(candidate)
        logger.debug(
            "Loaded candidate",
            candidate=candidate.name,
            index=index,
            probe_address=candidate.probe_address,
        )

    return CandidatePool(candidates, mode)
