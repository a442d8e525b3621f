"""
Azure Resource Manager client for nvadaemon

Talks to the ARM REST API over aiohttp using a service principal's client
secret. Reads are retried with exponential backoff; writes are sent once and
followed to completion through the ``Azure-AsyncOperation`` header.
"""

from __future__ import annotations

import asyncio
import json
import re
import time

from typing import TYPE_CHECKING, Any

import aiohttp
import structlog

from nvadaemon.cloud.interfaces import (
    NetworkInterface,
    PublicIpAddress,
    Route,
    RouteTable,
)
from nvadaemon.core.errors import CloudError

if TYPE_CHECKING:
    from nvadaemon.config.settings import AzureSettings

logger = structlog.get_logger(__name__)

ARM_ENDPOINT = "https://management.azure.com"
LOGIN_ENDPOINT = "https://login.microsoftonline.com"
NETWORK_API_VERSION = "2024-05-01"

# Statuses worth retrying for idempotent reads
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

_IP_CONFIGURATION_PATTERN = re.compile(
    r"/resourceGroups/(?P<group>[^/]+)/providers/Microsoft\.Network/"
    r"networkInterfaces/(?P<nic>[^/]+)/ipConfigurations/",
    re.IGNORECASE,
)


class ClientSecretCredential:
    """OAuth2 client-credentials token source for a service principal."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        authority: str = LOGIN_ENDPOINT,
        scope: str = f"{ARM_ENDPOINT}/.default",
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.authority = authority.rstrip("/")
        self.scope = scope

        self._token: str | None = None
        self._expires_at: float = 0.0

    async def get_token(
        self, session: aiohttp.ClientSession, timeout: aiohttp.ClientTimeout
    ) -> str:
        """Return a cached access token, refreshing it a minute before expiry."""
        if self._token and time.monotonic() < self._expires_at - 60:
            return self._token

        url = f"{self.authority}/{self.tenant_id}/oauth2/v2.0/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "scope": self.scope,
        }

        try:
            async with session.post(url, data=data, timeout=timeout) as response:
                text = await response.text()
                if response.status != 200:
                    raise CloudError(
                        f"Token request failed: HTTP {response.status}: {text}",
                        status=response.status,
                    )
                payload: dict[str, Any] = json.loads(text)
            token = payload["access_token"]
            expires_in = float(payload.get("expires_in", 3600))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CloudError(
                f"Token request failed: {e.__class__.__name__}: {e}"
            ) from e
        except (ValueError, TypeError, KeyError) as e:
            raise CloudError(
                f"Malformed token response: {e.__class__.__name__}: {e}"
            ) from e

        self._token = token
        self._expires_at = time.monotonic() + expires_in
        logger.debug("Acquired ARM access token", tenant=self.tenant_id)
        return self._token


class AzureNetworkClient:
    """ARM REST implementation of :class:`~nvadaemon.cloud.interfaces.CloudNetwork`."""

    def __init__(
        self,
        subscription_id: str,
        credential: ClientSecretCredential,
        request_timeout: float = 30.0,
        read_retries: int = 3,
        retry_delay: float = 1.0,
        poll_interval: float = 2.0,
        endpoint: str = ARM_ENDPOINT,
        session: aiohttp.ClientSession | None = None,
    ):
        """
        Initialize the ARM client.

        Args:
            subscription_id: Subscription holding the resource groups
            credential: Token source for ARM requests
            request_timeout: Total timeout for a single HTTP request in seconds
            read_retries: Attempts for idempotent GET requests
            retry_delay: Base delay between read attempts, doubled each retry
            poll_interval: Delay between long-running operation status polls
            endpoint: ARM base URL
            session: Existing aiohttp session to use instead of creating one
        """
        self.subscription_id = subscription_id
        self.credential = credential
        self.timeout = aiohttp.ClientTimeout(total=request_timeout)
        self.read_retries = max(1, read_retries)
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval
        self.endpoint = endpoint.rstrip("/")

        self._session = session
        self._inflight: set[asyncio.Task] = set()
        self._closed = False

    @classmethod
    def from_settings(cls, settings: AzureSettings) -> AzureNetworkClient:
        """Build a client from the ``azure.*`` settings."""
        credential = ClientSecretCredential(
            tenant_id=settings.tenant_id,
            client_id=settings.client_id,
            client_secret=settings.client_secret.get_secret_value(),
            authority=settings.authority,
        )
        return cls(
            subscription_id=settings.subscription_id,
            credential=credential,
            request_timeout=settings.request_timeout,
            read_retries=settings.read_retries,
            endpoint=settings.endpoint,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._closed:
            raise CloudError("Azure client is closed")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def _resource_id(self, resource_group: str, path: str) -> str:
        return (
            f"/subscriptions/{self.subscription_id}/resourceGroups/{resource_group}"
            f"/providers/Microsoft.Network/{path}"
        )

    def _url(self, resource_id: str) -> str:
        return f"{self.endpoint}{resource_id}?api-version={NETWORK_API_VERSION}"

    async def _send(
        self, method: str, url: str, body: dict[str, Any] | None = None
    ) -> tuple[int, dict[str, Any], dict[str, str]]:
        session = self._get_session()
        token = await self.credential.get_token(session, self.timeout)
        headers = {"Authorization": f"Bearer {token}"}

        async with session.request(
            method, url, json=body, headers=headers, timeout=self.timeout
        ) as response:
            text = await response.text()
            payload: dict[str, Any] = json.loads(text) if text else {}
            return response.status, payload, dict(response.headers)

    async def _request(
        self, method: str, url: str, body: dict[str, Any] | None = None
    ) -> tuple[int, dict[str, Any], dict[str, str]]:
        """Send one request, tracking it so ``close`` can drain or cancel it."""
        task = asyncio.ensure_future(self._send(method, url, body))
        self._inflight.add(task)
        try:
            return await task
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise CloudError(
                f"{method} {url} failed: {e.__class__.__name__}: {e}"
            ) from e
        finally:
            self._inflight.discard(task)

    async def _get(self, resource_id: str) -> dict[str, Any] | None:
        """GET a resource, returning None on 404 and retrying transient failures."""
        url = self._url(resource_id)
        last_error: CloudError | None = None

        for attempt in range(self.read_retries):
            if attempt:
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.debug(
                    "Retrying ARM read",
                    resource=resource_id,
                    attempt=attempt + 1,
                    delay=delay,
                )
                await asyncio.sleep(delay)

            try:
                status, payload, _ = await self._request("GET", url)
            except CloudError as e:
                if e.status is not None and e.status not in RETRYABLE_STATUSES:
                    raise
                last_error = e
                continue

            if status == 200:
                return payload
            if status == 404:
                return None

            last_error = CloudError(
                f"GET {resource_id} failed: HTTP {status}: {_error_message(payload)}",
                status=status,
            )
            if status not in RETRYABLE_STATUSES:
                break

        if last_error is None:
            raise CloudError(f"GET {resource_id} was not attempted")
        raise last_error

    async def _put(self, resource_id: str, body: dict[str, Any]) -> dict[str, Any]:
        """PUT a resource once and wait for the operation to finish."""
        status, payload, headers = await self._request("PUT", self._url(resource_id), body)
        if status not in (200, 201):
            raise CloudError(
                f"PUT {resource_id} failed: HTTP {status}: {_error_message(payload)}",
                status=status,
            )

        operation_url = headers.get("Azure-AsyncOperation") or headers.get(
            "azure-asyncoperation"
        )
        if operation_url:
            await self._wait_for_operation(resource_id, operation_url)
        return payload

    async def _wait_for_operation(self, resource_id: str, operation_url: str) -> None:
        while True:
            status, payload, _ = await self._request("GET", operation_url)
            if status != 200:
                raise CloudError(
                    f"Polling operation for {resource_id} failed: HTTP {status}",
                    status=status,
                )

            state = payload.get("status", "InProgress")
            if state == "Succeeded":
                return
            if state in ("Failed", "Canceled"):
                raise CloudError(
                    f"Operation on {resource_id} {state.lower()}: {_error_message(payload)}"
                )

            logger.debug("Waiting for ARM operation", resource=resource_id, status=state)
            await asyncio.sleep(self.poll_interval)

    # CloudNetwork

    async def get_network_interface(
        self, resource_group: str, name: str
    ) -> NetworkInterface | None:
        payload = await self._get(
            self._resource_id(resource_group, f"networkInterfaces/{name}")
        )
        if payload is None:
            return None
        return _parse_network_interface(payload, resource_group)

    async def get_public_ip_address(
        self, resource_group: str, name: str
    ) -> PublicIpAddress | None:
        payload = await self._get(
            self._resource_id(resource_group, f"publicIPAddresses/{name}")
        )
        if payload is None:
            return None
        return _parse_public_ip_address(payload, resource_group)

    async def get_public_ip_holder(
        self, public_ip: PublicIpAddress
    ) -> NetworkInterface | None:
        current = await self.get_public_ip_address(public_ip.resource_group, public_ip.name)
        if current is None or not current.has_assigned_interface():
            return None
        return await self.get_network_interface(
            current.assigned_resource_group or current.resource_group,
            current.assigned_interface,
        )

    async def detach_public_ip(self, resource_group: str, interface_name: str) -> None:
        resource_id = self._resource_id(resource_group, f"networkInterfaces/{interface_name}")
        nic = await self._get(resource_id)
        if nic is None:
            raise CloudError(f"Network interface {interface_name} not found", status=404)

        ip_configuration = _primary_ip_configuration(nic)
        if ip_configuration["properties"].pop("publicIPAddress", None) is None:
            logger.debug("No public IP on interface", interface=interface_name)
            return

        logger.info("Detaching public IP", interface=interface_name)
        await self._put(resource_id, nic)

    async def attach_public_ip(
        self, resource_group: str, interface_name: str, public_ip: PublicIpAddress
    ) -> None:
        resource_id = self._resource_id(resource_group, f"networkInterfaces/{interface_name}")
        nic = await self._get(resource_id)
        if nic is None:
            raise CloudError(f"Network interface {interface_name} not found", status=404)

        public_ip_id = public_ip.id or self._resource_id(
            public_ip.resource_group, f"publicIPAddresses/{public_ip.name}"
        )
        ip_configuration = _primary_ip_configuration(nic)
        ip_configuration["properties"]["publicIPAddress"] = {"id": public_ip_id}

        logger.info(
            "Attaching public IP", interface=interface_name, public_ip=public_ip.name
        )
        await self._put(resource_id, nic)

    async def get_route_table(
        self, resource_group: str, name: str
    ) -> RouteTable | None:
        payload = await self._get(self._resource_id(resource_group, f"routeTables/{name}"))
        if payload is None:
            return None

        routes = [
            _parse_route(route) for route in payload.get("properties", {}).get("routes", [])
        ]
        return RouteTable(
            name=payload.get("name", name),
            resource_group=resource_group,
            routes={route.name: route for route in routes},
            id=payload.get("id"),
        )

    async def get_route(self, route_table: RouteTable, name: str) -> Route | None:
        payload = await self._get(
            self._resource_id(
                route_table.resource_group, f"routeTables/{route_table.name}/routes/{name}"
            )
        )
        if payload is None:
            return None
        return _parse_route(payload)

    async def update_route_next_hop(
        self,
        resource_group: str,
        route_table_name: str,
        route_name: str,
        next_hop_ip_address: str,
    ) -> None:
        resource_id = self._resource_id(
            resource_group, f"routeTables/{route_table_name}/routes/{route_name}"
        )
        route = await self._get(resource_id)
        if route is None:
            raise CloudError(
                f"Route {route_table_name}/{route_name} not found", status=404
            )

        body = {
            "properties": {
                "addressPrefix": route.get("properties", {}).get("addressPrefix"),
                "nextHopType": "VirtualAppliance",
                "nextHopIpAddress": next_hop_ip_address,
            }
        }
        logger.info(
            "Updating route next hop",
            route_table=route_table_name,
            route=route_name,
            next_hop=next_hop_ip_address,
        )
        await self._put(resource_id, body)

    async def close(self, grace_period: float = 5.0) -> None:
        """Drain in-flight requests for up to ``grace_period`` seconds, then cancel."""
        self._closed = True

        if self._inflight:
            _, pending = await asyncio.wait(set(self._inflight), timeout=grace_period)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(
                    "Cancelled in-flight ARM requests at shutdown", count=len(pending)
                )
                await asyncio.gather(*pending, return_exceptions=True)

        if self._session is not None and not self._session.closed:
            await self._session.close()
        logger.debug("Azure client closed")


def _error_message(payload: dict[str, Any]) -> str:
    error = payload.get("error") or {}
    if isinstance(error, dict):
        return error.get("message") or error.get("code") or json.dumps(payload)
    return str(error)


def _primary_ip_configuration(nic: dict[str, Any]) -> dict[str, Any]:
    configurations = nic.get("properties", {}).get("ipConfigurations", [])
    if not configurations:
        raise CloudError(f"Network interface {nic.get('name')} has no IP configurations")

    for configuration in configurations:
        properties = configuration.setdefault("properties", {})
        if properties.get("primary"):
            return configuration
    return configurations[0]


def _parse_network_interface(payload: dict[str, Any], resource_group: str) -> NetworkInterface:
    private_ip: str | None = None
    public_ip_id: str | None = None

    if payload.get("properties", {}).get("ipConfigurations"):
        properties = _primary_ip_configuration(payload)["properties"]
        private_ip = properties.get("privateIPAddress")
        public_ip_id = (properties.get("publicIPAddress") or {}).get("id")

    return NetworkInterface(
        name=payload["name"],
        resource_group=resource_group,
        primary_private_ip=private_ip,
        public_ip_id=public_ip_id,
        id=payload.get("id"),
    )


def _parse_public_ip_address(payload: dict[str, Any], resource_group: str) -> PublicIpAddress:
    properties = payload.get("properties", {})
    configuration_id = (properties.get("ipConfiguration") or {}).get("id", "")

    assigned_interface: str | None = None
    assigned_group: str | None = None
    match = _IP_CONFIGURATION_PATTERN.search(configuration_id)
    if match:
        assigned_group = match.group("group")
        assigned_interface = match.group("nic")

    return PublicIpAddress(
        name=payload["name"],
        resource_group=resource_group,
        ip_address=properties.get("ipAddress"),
        assigned_interface=assigned_interface,
        assigned_resource_group=assigned_group,
        id=payload.get("id"),
    )


def _parse_route(payload: dict[str, Any]) -> Route:
    properties = payload.get("properties", {})
    return Route(
        name=payload["name"],
        address_prefix=properties.get("addressPrefix"),
        next_hop_type=properties.get("nextHopType", "None"),
        next_hop_ip_address=properties.get("nextHopIpAddress"),
    )
