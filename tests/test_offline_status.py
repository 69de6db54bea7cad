import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from models.connectivity import ConnectionStatus
from models.messages import ConnectionVerdict
from models.request_body import JsonBody
from services.connectivity import NetworkMonitor
from services.offline_fetch import is_queued
from services.offline_status import NotificationKind
from services.runtime import OfflineRuntime


async def eventually(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _runtime(server, db_engine, settings, online=True, **kwargs):
    monitor = NetworkMonitor(online=online, settings=settings.connectivity)
    transport = httpx.MockTransport(server.handler)
    return OfflineRuntime(settings, db_engine, transport, monitor, **kwargs)


@pytest.mark.asyncio
async def test_offline_submission_syncs_exactly_once_when_back_online(server, db_engine, settings):
    runtime = _runtime(server, db_engine, settings, online=False)
    await runtime.start(install_worker=False, watch_link=False)
    try:
        assert runtime.status.status is ConnectionStatus.OFFLINE_INTERNET

        payload = {"name": "Test", "email": "test@example.com"}
        res = await runtime.fetch("/api/offline-test", method="POST", body=payload)
        assert is_queued(res)
        assert runtime.queue.count() == 1
        assert runtime.status.pending == 1
        assert server.requests == []

        runtime.monitor.set_online(True)
        await eventually(lambda: runtime.queue.count() == 0)
        await runtime.status.settle()

        posts = server.calls("POST", "/api/offline-test")
        assert len(posts) == 1
        assert json.loads(posts[0].content) == payload
        assert runtime.status.pending == 0
        assert runtime.status.is_online
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_leftovers_are_synced_on_start(server, db_engine, settings):
    runtime = _runtime(server, db_engine, settings)
    runtime.queue.enqueue("/api/items/1", "POST", JsonBody({"n": 1}))
    await runtime.start(install_worker=False, watch_link=False)
    try:
        await eventually(lambda: runtime.queue.count() == 0)
        assert len(server.calls("POST", "/api/items/1")) == 1
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_connection_notices_are_debounced(server, db_engine, settings):
    runtime = _runtime(server, db_engine, settings)
    notices = []
    runtime.status.notifications.subscribe(notices.append)
    await runtime.start(install_worker=False, watch_link=False)
    try:
        # the first verdict is a baseline, no toast
        assert notices == []

        server.server = False
        await runtime.status.check_connection()
        server.server = True
        await runtime.status.check_connection()
        server.internet = False
        await runtime.status.check_connection()

        assert runtime.status.status is ConnectionStatus.OFFLINE_INTERNET
        assert len(notices) == 1
        assert notices[0].kind is NotificationKind.OFFLINE
        assert "server is unreachable" in notices[0].description
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_every_transition_notifies_without_debounce(server, db_engine, settings):
    settings = replace(settings, sync=replace(settings.sync, notify_debounce=0))
    runtime = _runtime(server, db_engine, settings)
    notices = []
    runtime.status.notifications.subscribe(notices.append)
    await runtime.start(install_worker=False, watch_link=False)
    try:
        server.internet = False
        await runtime.status.check_connection()
        server.internet = True
        await runtime.status.check_connection()

        assert [n.kind for n in notices] == [NotificationKind.OFFLINE, NotificationKind.ONLINE]
        assert "No internet connection" in notices[0].description
        assert notices[1].description == "All set."
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_worker_trigger_runs_a_sync(server, db_engine, settings):
    runtime = _runtime(server, db_engine, settings, background_sync=False)
    await runtime.start(install_worker=False, watch_link=False)
    try:
        runtime.queue.enqueue("/api/items/1", "POST", JsonBody({"n": 1}))

        runtime.worker.on_sync("some-other-tag")
        await asyncio.sleep(0.05)
        assert runtime.queue.count() == 1

        runtime.worker.on_sync(settings.worker.background_sync_tag)
        await eventually(lambda: runtime.queue.count() == 0)
        assert runtime.sync_engine.runs == 1
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_worker_verdict_updates_connectivity(server, db_engine, settings):
    runtime = _runtime(server, db_engine, settings)
    await runtime.start(install_worker=False, watch_link=False)
    try:
        assert runtime.status.is_online
        runtime.worker.clients.post(ConnectionVerdict(False))
        await eventually(lambda: not runtime.status.is_online)
        assert runtime.status.snapshot().status is ConnectionStatus.OFFLINE_INTERNET
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_partial_sync_notice(server, db_engine, settings):
    runtime = _runtime(server, db_engine, settings)
    await runtime.start(install_worker=False, watch_link=False)
    notices = []
    runtime.status.notifications.subscribe(notices.append)
    snapshots = []
    runtime.status.changes.subscribe(snapshots.append)
    try:
        runtime.queue.enqueue("/api/items/1", "POST", JsonBody({}))
        runtime.queue.enqueue("/api/items/2", "POST", JsonBody({}))
        server.script("POST", "/api/items/2", 503)

        result = await runtime.status.sync_now()

        assert result.partial
        assert [n.kind for n in notices] == [NotificationKind.PARTIAL]
        assert notices[0].description == "1 synced, 1 still pending."
        assert runtime.status.pending == 1
        assert any(s.is_syncing for s in snapshots)
        assert not snapshots[-1].is_syncing
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_full_sync_notice(server, db_engine, settings):
    runtime = _runtime(server, db_engine, settings)
    await runtime.start(install_worker=False, watch_link=False)
    notices = []
    runtime.status.notifications.subscribe(notices.append)
    try:
        runtime.queue.enqueue("/api/items/1", "POST", JsonBody({}))
        runtime.queue.enqueue("/api/items/2", "POST", JsonBody({}))
        await runtime.status.sync_now()
        assert [n.kind for n in notices] == [NotificationKind.SYNCED]
        assert notices[0].description == "2 queued changes reached the server."
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_link_flapping_notifies_once(server, db_engine, settings):
    runtime = _runtime(server, db_engine, settings)
    notices = []
    runtime.status.notifications.subscribe(notices.append)
    await runtime.start(install_worker=False, watch_link=False)
    try:
        runtime.monitor.set_online(False)
        assert not runtime.status.is_online
        runtime.monitor.set_online(True)
        await runtime.status.check_connection()

        assert runtime.status.is_online
        assert len(notices) <= 1
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_app_requests_pass_through_the_worker(server, db_engine, settings):
    runtime = _runtime(server, db_engine, settings)
    await runtime.start(install_worker=False, watch_link=False)
    try:
        res = await runtime.client.get("/app.js")
        assert res.text == "asset /app.js"
        # connectivity checks are neither cached nor faked
        assert runtime.worker.cache.keys() == ["/app.js"]

        server.down = True
        cached = await runtime.client.get("/app.js")
        assert cached.status_code == 200
        assert cached.text == "asset /app.js"

        res = await runtime.fetch("/api/notes", method="POST", body={"t": 1})
        assert is_queued(res)
        assert runtime.queue.count() == 1
        assert len(server.calls("POST", "/api/notes")) == 1
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_worker_ping_notices_an_idle_outage(server, db_engine, settings):
    settings = replace(settings, sync=replace(settings.sync, worker_ping_interval=0.02))
    runtime = _runtime(server, db_engine, settings)
    await runtime.start(install_worker=False, watch_link=False)
    try:
        assert runtime.status.is_online

        # the prober only polls every minute, the ping is what sees this
        server.server = False
        await eventually(lambda: not runtime.status.is_online)

        server.server = True
        await eventually(lambda: runtime.status.is_online)
    finally:
        await runtime.close()

    pings = len(server.calls("GET", "/api/health"))
    await asyncio.sleep(0.05)
    assert len(server.calls("GET", "/api/health")) == pings
