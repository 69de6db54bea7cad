import asyncio

import httpx
import pytest

from models.connectivity import ConnectionStatus, ConnectivityState
from services.connectivity import ConnectivityProber, NetworkMonitor

from conftest import BASE_URL


def test_status_is_derived_from_both_flags():
    assert ConnectivityState(True, True).status is ConnectionStatus.ONLINE
    assert ConnectivityState(True, False).status is ConnectionStatus.OFFLINE_SERVER
    assert ConnectivityState(False, True).status is ConnectionStatus.OFFLINE_INTERNET
    assert ConnectivityState(False, False).status is ConnectionStatus.OFFLINE_INTERNET
    assert ConnectivityState(True, True).is_online
    assert not ConnectivityState(True, False).is_online


def _prober(client, settings, online=True):
    monitor = NetworkMonitor(online=online, settings=settings.connectivity)
    return ConnectivityProber(client, monitor, settings.connectivity)


@pytest.mark.asyncio
async def test_online_when_both_probes_succeed(client, server, settings):
    prober = _prober(client, settings)
    state = await prober.check()
    assert state.status is ConnectionStatus.ONLINE
    # both probes carry a cache-busting parameter
    assert all("ts" in r.url.params for r in server.requests)


@pytest.mark.asyncio
async def test_server_down_with_internet(client, server, settings):
    server.server = False
    prober = _prober(client, settings)
    seen = []
    prober.changes.subscribe(seen.append)

    state = await prober.check()
    assert state.status is ConnectionStatus.OFFLINE_SERVER
    assert state.has_internet and not state.has_server
    assert [s.status for s in seen] == [ConnectionStatus.OFFLINE_SERVER]

    # same verdict again: no new event
    await prober.check()
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_no_internet(client, server, settings):
    server.internet = False
    prober = _prober(client, settings)
    state = await prober.check()
    assert state.status is ConnectionStatus.OFFLINE_INTERNET
    assert not state.has_server


@pytest.mark.asyncio
async def test_health_404_falls_back_to_known_endpoint(client, server, settings):
    server.health_status = 404
    prober = _prober(client, settings)
    assert await prober.has_server() is True
    assert server.calls("GET", "/api/offline-test")

    server.script("GET", "/api/offline-test", 500)
    assert await prober.has_server() is False


@pytest.mark.asyncio
async def test_health_error_does_not_fall_back(client, server, settings):
    server.health_status = 500
    prober = _prober(client, settings)
    assert await prober.has_server() is False
    assert not server.calls("GET", "/api/offline-test")


@pytest.mark.asyncio
async def test_link_down_skips_the_network(client, server, settings):
    prober = _prober(client, settings, online=False)
    state = await prober.check()
    assert state.status is ConnectionStatus.OFFLINE_INTERNET
    assert await prober.has_internet() is False
    assert await prober.has_server() is False
    assert server.requests == []


@pytest.mark.asyncio
async def test_concurrent_checks_share_one_cycle(client, server, settings):
    prober = _prober(client, settings)
    states = await asyncio.gather(prober.check(), prober.check(), prober.check())
    assert prober.cycles == 1
    assert len(set(states)) == 1
    assert len(server.requests) == 2

    await prober.check()
    assert prober.cycles == 2


@pytest.mark.asyncio
async def test_slow_probe_counts_as_failure(settings):
    async def slow(request):
        await asyncio.sleep(1)
        return httpx.Response(200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(slow), base_url=BASE_URL)
    prober = _prober(client, settings)
    state = await asyncio.wait_for(prober.check(), timeout=2)
    assert not state.has_internet
    assert not state.has_server
    await client.aclose()


@pytest.mark.asyncio
async def test_link_events_drive_state(client, server, settings):
    monitor = NetworkMonitor(settings=settings.connectivity)
    prober = ConnectivityProber(client, monitor, settings.connectivity)
    prober.start()
    try:
        await prober.check()
        assert prober.state.is_online
        requests_before = len(server.requests)

        monitor.set_online(False)
        assert prober.state.status is ConnectionStatus.OFFLINE_INTERNET
        assert len(server.requests) == requests_before

        monitor.set_online(True)
        await prober.check()
        assert prober.state.is_online
    finally:
        prober.stop()


def _slow_client(server, delay=0.05):
    async def handler(request):
        await asyncio.sleep(delay)
        return server.handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)


@pytest.mark.asyncio
async def test_link_down_during_a_cycle_wins(server, settings):
    client = _slow_client(server)
    monitor = NetworkMonitor(settings=settings.connectivity)
    prober = ConnectivityProber(client, monitor, settings.connectivity)
    prober.start()
    try:
        inflight = prober.check()
        await asyncio.sleep(0.01)
        monitor.set_online(False)

        state = await inflight
        assert not state.is_online
        assert prober.state.status is ConnectionStatus.OFFLINE_INTERNET
    finally:
        prober.stop()
        await client.aclose()


@pytest.mark.asyncio
async def test_forced_offline_during_a_cycle_wins(server, settings):
    client = _slow_client(server)
    prober = _prober(client, settings)
    seen = []
    prober.changes.subscribe(seen.append)

    inflight = prober.check()
    await asyncio.sleep(0.01)
    prober.force_offline()
    await inflight
    assert not prober.state.is_online
    assert [s.is_online for s in seen] == [False]

    # the next check is a fresh cycle, not the dropped one
    state = await prober.check()
    assert state.is_online
    assert prober.cycles == 2
    await client.aclose()
