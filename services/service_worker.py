"""In-process service worker: shell cache plus the background-sync bridge.

The worker never replays queued requests itself. It only tells the open app
instances to do so, since they own the authenticated client. All traffic
between the worker and the app goes through typed channels delivered on a
later loop iteration.
"""

from __future__ import annotations

import asyncio
import json
from typing import Callable, Iterable, List, Optional, Set
from urllib.parse import urlsplit

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from core.log import get_logger
from core.settings import OFFLINE, ConnectivitySettings, WorkerSettings
from datetime_utils import now_ms
from models.cached_response import CachedResponse
from models.messages import (
    CheckConnection,
    ClientMessage,
    ConnectionVerdict,
    SyncPending,
    TriggerSync,
    WorkerMessage,
)
from services.channel import Channel
from services.connectivity import NO_STORE_HEADERS, NetworkMonitor
from storage.db import get_session


# hop-by-hop / length headers are recomputed when a cached body is served
_SKIP_HEADERS = {"content-length", "content-encoding", "transfer-encoding", "connection"}


def cache_key(url) -> str:
    parts = urlsplit(str(url))
    return parts.path + (f"?{parts.query}" if parts.query else "")


class ShellCache:
    """Named response cache stored next to the offline queue."""

    def __init__(self, name: str, engine: Optional[Engine] = None) -> None:
        self.name = name
        self.engine = engine

    def put(self, url, response: httpx.Response) -> None:
        key = cache_key(url)
        headers = {k: v for k, v in response.headers.items() if k.lower() not in _SKIP_HEADERS}
        with get_session(self.engine) as session:
            session.execute(
                delete(CachedResponse).where(
                    CachedResponse.cache_name == self.name, CachedResponse.url == key
                )
            )
            session.add(
                CachedResponse(
                    cache_name=self.name,
                    url=key,
                    status=response.status_code,
                    headers=json.dumps(headers),
                    content=response.content,
                    cached_at=now_ms(),
                )
            )
            session.commit()

    def match(self, url, request: Optional[httpx.Request] = None) -> Optional[httpx.Response]:
        key = cache_key(url)
        with get_session(self.engine) as session:
            row = session.exec(
                select(CachedResponse).where(
                    CachedResponse.cache_name == self.name, CachedResponse.url == key
                )
            ).first()
            if row is None:
                return None
            return httpx.Response(
                row.status,
                headers=json.loads(row.headers or "{}"),
                content=row.content,
                request=request,
            )

    def keys(self) -> List[str]:
        with get_session(self.engine) as session:
            rows = session.exec(
                select(CachedResponse.url).where(CachedResponse.cache_name == self.name)
            )
            return sorted(rows)

    @staticmethod
    def names(engine: Optional[Engine] = None) -> Set[str]:
        with get_session(engine) as session:
            return set(session.exec(select(CachedResponse.cache_name).distinct()))

    @staticmethod
    def drop(name: str, engine: Optional[Engine] = None) -> None:
        with get_session(engine) as session:
            session.execute(delete(CachedResponse).where(CachedResponse.cache_name == name))
            session.commit()


class BackgroundSyncManager:
    """Holds sync tags until the network link is up, then fires them once."""

    def __init__(self, monitor: NetworkMonitor) -> None:
        self.monitor = monitor
        self.tags: Set[str] = set()
        self.fired: Channel[str] = Channel("background-sync")
        self._unsubscribe = monitor.changes.subscribe(self._on_link)

    def register(self, tag: str) -> None:
        self.tags.add(tag)
        if self.monitor.is_online:
            asyncio.get_running_loop().call_soon(self.flush)

    def flush(self) -> None:
        tags, self.tags = sorted(self.tags), set()
        for tag in tags:
            self.fired.publish(tag)

    def _on_link(self, online: bool) -> None:
        if online and self.tags:
            self.flush()

    def close(self) -> None:
        self._unsubscribe()


class ServiceWorker:
    def __init__(
        self,
        network: httpx.AsyncClient,
        engine: Optional[Engine] = None,
        settings: Optional[WorkerSettings] = None,
        connectivity: Optional[ConnectivitySettings] = None,
        sync_manager: Optional[BackgroundSyncManager] = None,
    ) -> None:
        self.network = network
        self.engine = engine
        self.settings = settings or OFFLINE.worker
        self.connectivity = connectivity or OFFLINE.connectivity
        self.cache = ShellCache(self.settings.cache_name, engine)
        self.sync_manager = sync_manager
        self.logger = get_logger("hive.worker")

        self.clients: Channel[WorkerMessage] = Channel("worker-clients")
        self.inbox: Channel[ClientMessage] = Channel("worker-inbox")
        self.inbox.subscribe(self.on_message)
        if sync_manager is not None:
            sync_manager.fired.subscribe(self.on_sync)

        self._last_verdict: Optional[bool] = None
        self._refreshes: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # lifecycle
    async def install(self, assets: Optional[Iterable[str]] = None) -> List[str]:
        paths = list(assets or self.settings.shell_assets)
        cached = []
        for path in paths:
            try:
                res = await self.network.get(path)
            except httpx.HTTPError as exc:
                self.logger.warning("Pre-cache of %s failed: %s", path, exc)
                continue
            if res.is_success and self._store(res.request.url, res):
                cached.append(path)
            elif not res.is_success:
                self.logger.warning("Pre-cache of %s returned %s", path, res.status_code)
        self.logger.info(
            "Installed %s with %d/%d shell assets", self.settings.cache_name, len(cached), len(paths)
        )
        return cached

    async def activate(self) -> None:
        for name in ShellCache.names(self.engine):
            if name != self.settings.cache_name:
                self.logger.info("Dropping old cache %s", name)
                ShellCache.drop(name, self.engine)

    # ------------------------------------------------------------------
    # cache access, a failed cache never fails the request
    def _store(self, url, response: httpx.Response) -> bool:
        try:
            self.cache.put(url, response)
        except SQLAlchemyError as exc:
            self.logger.error("Could not cache %s: %s", cache_key(url), exc)
            return False
        return True

    def _lookup(self, url, request: httpx.Request) -> Optional[httpx.Response]:
        try:
            return self.cache.match(url, request)
        except (SQLAlchemyError, ValueError) as exc:
            self.logger.error("Could not read cached %s: %s", cache_key(url), exc)
            return None

    # ------------------------------------------------------------------
    # fetch
    def _in_scope(self, request: httpx.Request) -> bool:
        base = self.network.base_url
        if not base.host:
            return False
        url = request.url
        return (url.scheme, url.host, url.port) == (base.scheme, base.host, base.port)

    def _is_api(self, request: httpx.Request) -> bool:
        return request.url.path.startswith(self.settings.api_prefix)

    @staticmethod
    def is_navigation(request: httpx.Request) -> bool:
        if request.headers.get("sec-fetch-mode") == "navigate":
            return True
        return request.method == "GET" and "text/html" in request.headers.get("accept", "")

    async def handle_fetch(self, request: httpx.Request) -> httpx.Response:
        if not self._in_scope(request):
            # third-party hosts are not ours to cache or fake
            return await self.network.send(request)
        if self._is_api(request):
            return await self._network_only(request)
        if request.method != "GET":
            return await self.network.send(request)
        if self.is_navigation(request):
            return await self._network_first(request)
        return await self._cache_first(request)

    async def _network_only(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self.network.send(request)
        except httpx.HTTPError as exc:
            self.logger.debug("API %s unreachable: %s", request.url.path, exc)
            return httpx.Response(
                503,
                json={"error": "service unavailable", "offline": True},
                request=request,
            )

    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        try:
            res = await self.network.send(request)
            await res.aread()
        except httpx.HTTPError as exc:
            self.logger.debug("Navigation to %s failed: %s", request.url.path, exc)
        else:
            if res.is_success:
                self._store(request.url, res)
            return res
        for candidate in (request.url, self.settings.offline_page, "/"):
            cached = self._lookup(candidate, request)
            if cached is not None:
                return cached
        return httpx.Response(503, text="Offline", headers={"Content-Type": "text/plain"}, request=request)

    async def _cache_first(self, request: httpx.Request) -> httpx.Response:
        cached = self._lookup(request.url, request)
        if cached is not None:
            task = asyncio.get_running_loop().create_task(self._refresh(request))
            self._refreshes.add(task)
            task.add_done_callback(self._refreshes.discard)
            return cached
        try:
            res = await self.network.send(request)
        except httpx.HTTPError:
            return httpx.Response(503, request=request)
        await res.aread()
        if res.is_success:
            self._store(request.url, res)
        return res

    async def _refresh(self, request: httpx.Request) -> None:
        try:
            res = await self.network.send(self.network.build_request("GET", request.url))
            await res.aread()
        except httpx.HTTPError:
            return
        if res.is_success:
            self._store(request.url, res)

    async def settle(self) -> None:
        """Wait for message handlers and background cache refreshes."""

        await self.inbox.drain()
        while self._refreshes:
            await asyncio.gather(*list(self._refreshes), return_exceptions=True)

    # ------------------------------------------------------------------
    # messaging
    def post_message(self, message: ClientMessage) -> None:
        self.inbox.post(message)

    async def on_message(self, message: ClientMessage) -> None:
        if isinstance(message, SyncPending):
            self.on_sync(message.tag)
        elif isinstance(message, CheckConnection):
            await self.check_connection()

    def on_sync(self, tag: str) -> None:
        if tag != self.settings.background_sync_tag:
            return
        self.logger.info("Background sync %r, notifying %d client(s)", tag, len(self.clients))
        self.clients.post(TriggerSync(tag))

    async def probe(self) -> bool:
        timeout = self.connectivity.probe_timeout
        try:
            res = await asyncio.wait_for(
                self.network.get(
                    self.connectivity.health_path,
                    params={"ts": now_ms()},
                    headers=NO_STORE_HEADERS,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except (httpx.HTTPError, asyncio.TimeoutError):
            return False
        return res.is_success

    async def check_connection(self) -> bool:
        online = await self.probe()
        if online != self._last_verdict:
            self._last_verdict = online
            self.clients.post(ConnectionVerdict(online))
        return online


class WorkerTransport(httpx.AsyncBaseTransport):
    """Puts the worker in front of an app client: every request is a fetch event."""

    def __init__(self, worker: ServiceWorker) -> None:
        self.worker = worker

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self.worker.handle_fetch(request)


class ServiceWorkerContainer:
    """App-side handle on the worker, the ``navigator.serviceWorker`` analogue."""

    def __init__(self, worker: Optional[ServiceWorker] = None) -> None:
        self.controller = worker
        self.logger = get_logger("hive.worker")

    def request_sync(self) -> None:
        worker = self.controller
        if worker is None:
            return
        tag = worker.settings.background_sync_tag
        if worker.sync_manager is not None:
            worker.sync_manager.register(tag)
        else:
            worker.post_message(SyncPending(tag))

    def ping(self) -> None:
        if self.controller is not None:
            self.controller.post_message(CheckConnection())

    def on_message(self, handler) -> Callable[[], None]:
        if self.controller is None:
            return lambda: None
        return self.controller.clients.subscribe(handler)


__all__ = [
    "BackgroundSyncManager",
    "ServiceWorker",
    "ServiceWorkerContainer",
    "ShellCache",
    "WorkerTransport",
    "cache_key",
]
