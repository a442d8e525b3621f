"""Tests for the TCP health probe."""

from __future__ import annotations

import asyncio

import pytest

from nvadaemon.core.pool import Candidate
from nvadaemon.failover.probe import FAILURE_THRESHOLD, HealthProbe
from nvadaemon.failover.state import FailoverState


@pytest.fixture
def candidate() -> Candidate:
    return Candidate(index=0, name="nva1", probe_interface="nva1-mgmt", probe_address="10.0.3.1")


class TestHealthProbe:
    """Consecutive failure counting."""

    @pytest.mark.asyncio
    async def test_unhealthy_after_three_failures(self, candidate: Candidate, connector):
        probe = HealthProbe(port=22, connector=connector)
        state = FailoverState()
        connector.queue(False, False, False)

        results = [await probe.check(candidate, state) for _ in range(3)]

        assert results == [True, True, False]
        assert state.consecutive_failures == FAILURE_THRESHOLD
        assert connector.targets == [("10.0.3.1", 22)] * 3

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, candidate: Candidate, connector):
        probe = HealthProbe(port=22, connector=connector)
        state = FailoverState()
        connector.queue(False, False, True, False, False)

        results = [await probe.check(candidate, state) for _ in range(5)]

        assert results == [True, True, True, True, True]
        assert state.consecutive_failures == 2

        connector.queue(False)
        assert await probe.check(candidate, state) is False

    @pytest.mark.asyncio
    async def test_stays_unhealthy_until_success(self, candidate: Candidate, connector):
        probe = HealthProbe(port=22, connector=connector)
        state = FailoverState()
        connector.queue(False, False, False, False)

        for _ in range(4):
            await probe.check(candidate, state)

        assert state.consecutive_failures == 4
        assert await probe.check(candidate, state) is True
        assert state.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_connect_timeout_counts_as_failure(self, candidate: Candidate):
        async def hanging_connector(host: str, port: int):
            await asyncio.sleep(10)

        probe = HealthProbe(port=22, timeout=0.05, connector=hanging_connector)
        state = FailoverState()

        assert await probe.check(candidate, state) is True
        assert state.consecutive_failures == 1
        assert state.last_probe is not None

    @pytest.mark.asyncio
    async def test_custom_threshold(self, candidate: Candidate, connector):
        probe = HealthProbe(port=22, threshold=1, connector=connector)
        state = FailoverState()
        connector.queue(False)

        assert await probe.check(candidate, state) is False


class TestHealthProbeSockets:
    """Probe against real localhost sockets."""

    @pytest.mark.asyncio
    async def test_listening_port_is_healthy(self):
        accepted: list[bool] = []

        async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            accepted.append(True)
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        candidate = Candidate(index=0, name="local", probe_interface="lo", probe_address="127.0.0.1")
        state = FailoverState(consecutive_failures=2)

        try:
            healthy = await HealthProbe(port=port, timeout=1.0).check(candidate, state)
        finally:
            server.close()
            await server.wait_closed()

        assert healthy is True
        assert state.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_refused_port_counts_as_failure(self, unused_port: int):
        candidate = Candidate(index=0, name="local", probe_interface="lo", probe_address="127.0.0.1")
        state = FailoverState()

        healthy = await HealthProbe(port=unused_port, timeout=1.0).check(candidate, state)

        assert healthy is True
        assert state.consecutive_failures == 1
