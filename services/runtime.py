"""Wires one instance of every offline component for an app process."""

from __future__ import annotations

from typing import Any, Optional

import httpx
from sqlalchemy.engine import Engine

from core.log import get_logger
from core.settings import OFFLINE, OfflineSettings
from services.connectivity import ConnectivityProber, NetworkMonitor
from services.offline_fetch import OfflineFetcher
from services.offline_status import OfflineStatus
from services.pending_queue import PendingQueue
from services.service_worker import (
    BackgroundSyncManager,
    ServiceWorker,
    ServiceWorkerContainer,
    WorkerTransport,
)
from services.sync_engine import SyncEngine
from storage.db import create_offline_engine, init_db


class OfflineRuntime:
    """Two clients share one wire: ``network`` is the worker's own, ``client``
    is what the app uses and every request on it passes through the worker.
    """

    def __init__(
        self,
        settings: Optional[OfflineSettings] = None,
        db_engine: Optional[Engine] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        monitor: Optional[NetworkMonitor] = None,
        background_sync: bool = True,
    ) -> None:
        self.settings = settings or OFFLINE
        self.logger = get_logger("hive.sync")
        base_url = self.settings.connectivity.base_url

        self.db_engine = init_db(db_engine or create_offline_engine())
        self.network = httpx.AsyncClient(base_url=base_url, transport=transport, follow_redirects=True)
        self.monitor = monitor or NetworkMonitor(settings=self.settings.connectivity)

        self.sync_manager = BackgroundSyncManager(self.monitor) if background_sync else None
        self.worker = ServiceWorker(
            self.network,
            self.db_engine,
            self.settings.worker,
            self.settings.connectivity,
            self.sync_manager,
        )
        self.client = httpx.AsyncClient(
            base_url=base_url,
            transport=WorkerTransport(self.worker),
            follow_redirects=True,
        )

        self.queue = PendingQueue(self.db_engine, self.settings.queue)
        self.prober = ConnectivityProber(self.client, self.monitor, self.settings.connectivity)
        self.container = ServiceWorkerContainer(self.worker)
        self.fetcher = OfflineFetcher(
            self.client, self.queue, self.monitor, self.container, self.settings.queue
        )
        self.sync_engine = SyncEngine(
            self.client, self.queue, self.prober, self.settings.sync, self.settings.queue
        )
        self.status = OfflineStatus(
            self.prober,
            self.queue,
            self.sync_engine,
            self.container,
            self.settings.sync,
            self.settings.toast,
        )

    async def fetch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.fetcher.fetch(url, **kwargs)

    async def start(self, *, install_worker: bool = True, watch_link: Optional[bool] = None) -> None:
        if install_worker:
            await self.worker.install()
            await self.worker.activate()
        if self.settings.connectivity.watch_link if watch_link is None else watch_link:
            self.monitor.start()
        await self.status.start()
        self.logger.info("Offline runtime started (%s pending)", self.status.pending)

    async def close(self) -> None:
        await self.status.stop()
        self.monitor.stop()
        if self.sync_manager is not None:
            self.sync_manager.close()
        await self.worker.settle()
        await self.status.settle()
        await self.client.aclose()
        await self.network.aclose()


__all__ = ["OfflineRuntime"]
