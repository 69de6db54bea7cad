import os
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

# keep logs and the default database out of the real user data dir
os.environ.setdefault("HIVE_DATA_DIR", tempfile.mkdtemp(prefix="hive-tests-"))

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from core.settings import OfflineSettings
from storage.db import init_db


BASE_URL = "http://app.test"
PROBE_HOST = "www.google.com"


class FakeServer:
    """Stand-in for the dashboard API and the third-party probe target."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.internet = True
        self.server = True
        self.down = False
        self.health_status = 200
        self.scripted: dict[tuple[str, str], list[int]] = {}
        self.items: list[dict] = []

    def script(self, method: str, path: str, *statuses: int) -> None:
        self.scripted.setdefault((method, path), []).extend(statuses)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == PROBE_HOST:
            if not self.internet:
                raise httpx.ConnectError("no route", request=request)
            return httpx.Response(200, content=b"\x00icon")
        if self.down or not self.internet:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path == "/api/health":
            return httpx.Response(self.health_status if self.server else 503, json={"ok": self.server})

        queue = self.scripted.get((request.method, path))
        if queue:
            status = queue.pop(0)
            return httpx.Response(status, json={"status": status})

        if path == "/api/offline-test":
            if request.method == "GET":
                return httpx.Response(200, json={"items": list(self.items)})
            self.items.append({"body": request.content.decode("utf-8")})
            return httpx.Response(200, json={"ok": True})
        if path.startswith("/api/"):
            return httpx.Response(200, json={"ok": True})
        if path.endswith(".js") or path.endswith(".css"):
            return httpx.Response(200, content=f"asset {path}".encode(), headers={"Content-Type": "text/plain"})
        return httpx.Response(200, text=f"<html>{path}</html>", headers={"Content-Type": "text/html"})


def fast_settings(**queue_overrides) -> OfflineSettings:
    base = OfflineSettings()
    return OfflineSettings(
        connectivity=replace(
            base.connectivity,
            base_url=BASE_URL,
            internet_probe_url=f"https://{PROBE_HOST}/favicon.ico",
            probe_timeout=0.2,
            poll_interval=60.0,
            watch_link=False,
        ),
        queue=replace(base.queue, **queue_overrides),
        sync=replace(
            base.sync,
            request_timeout=1.0,
            auto_sync_delay=0.01,
            periodic_interval=0,
            notify_debounce=1.5,
            worker_ping_interval=0,
        ),
        worker=base.worker,
        toast=base.toast,
    )


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def settings():
    return fast_settings()


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def client(server):
    return httpx.AsyncClient(transport=httpx.MockTransport(server.handler), base_url=BASE_URL)
