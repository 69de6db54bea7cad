from __future__ import annotations

from typing import Optional

import httpx

from core.log import get_logger
from core.settings import OFFLINE, QueueSettings, SyncSettings
from models.pending_item import STATUS_DEAD, PendingItem
from models.request_body import request_kwargs
from models.sync_result import SyncResult
from services.channel import Channel
from services.connectivity import ConnectivityProber
from services.offline_fetch import NO_STORE
from services.pending_queue import PendingQueue, QueueUnavailableError


class SyncEngine:
    """Replays the durable queue in submission order, one run at a time.

    The lock is a plain attribute flipped before the first ``await`` so two
    callers on the same loop can never both see it released.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        queue: PendingQueue,
        prober: ConnectivityProber,
        settings: Optional[SyncSettings] = None,
        queue_settings: Optional[QueueSettings] = None,
    ) -> None:
        self.client = client
        self.queue = queue
        self.prober = prober
        self.settings = settings or OFFLINE.sync
        self.queue_settings = queue_settings or queue.settings
        self.logger = get_logger("hive.sync")

        self.changes: Channel[bool] = Channel("syncing")
        self.completed: Channel[SyncResult] = Channel("sync-completed")

        self._syncing = False
        self.processed = 0
        self.pending = 0
        self.runs = 0

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    async def replay(self, item: PendingItem) -> httpx.Response:
        kwargs = request_kwargs(item.body, {**NO_STORE, **item.headers})
        return await self.client.request(
            item.method,
            item.url,
            timeout=self.settings.request_timeout,
            **kwargs,
        )

    async def sync(self) -> SyncResult:
        if self._syncing:
            return SyncResult(skipped=True)
        self._syncing = True
        self.processed = 0
        self.changes.publish(True)
        try:
            state = await self.prober.check()
            if not state.is_online:
                self.logger.info("Sync skipped: %s", state.status.value)
                return SyncResult(skipped=True)
            result = await self._drain()
        finally:
            self._syncing = False
            self._refresh_pending()
            self.changes.publish(False)

        self.logger.info(
            "Sync finished: synced=%s failed=%s dead=%s", result.synced, result.failed, result.dead
        )
        self.completed.publish(result)
        return result

    async def _drain(self) -> SyncResult:
        self.runs += 1
        try:
            items = self.queue.list_pending()
        except QueueUnavailableError as exc:
            self.logger.error("Cannot read offline queue: %s", exc)
            return SyncResult()

        synced = failed = dead = 0
        for item in items:
            self.processed += 1
            try:
                res = await self.replay(item)
            except httpx.HTTPError as exc:
                failed += 1
                dead += self._record_failure(item, f"{type(exc).__name__}: {exc}")
                continue
            except Exception as exc:
                self.logger.error("Replay of #%s crashed: %s", item.id, exc, exc_info=True)
                failed += 1
                dead += self._record_failure(item, str(exc))
                continue

            if res.is_success:
                try:
                    self.queue.remove(item.id)
                except QueueUnavailableError as exc:
                    # sent but still queued: it will be replayed again next run
                    self.logger.error("Could not remove #%s after replay: %s", item.id, exc)
                    failed += 1
                    continue
                synced += 1
                continue

            failed += 1
            drop = res.is_client_error and not self.queue_settings.requeue_client_errors
            self.logger.warning("Replay of #%s %s %s -> %s", item.id, item.method, item.url, res.status_code)
            dead += self._record_failure(item, f"HTTP {res.status_code}", dead=drop)

        return SyncResult(synced=synced, failed=failed, dead=dead)

    def _record_failure(self, item: PendingItem, error: str, *, dead: bool = False) -> int:
        try:
            updated = self.queue.mark_failed(item.id, error, dead=dead)
        except QueueUnavailableError as exc:
            self.logger.error("Could not record failure of #%s: %s", item.id, exc)
            return 0
        return int(bool(updated and updated.status == STATUS_DEAD))

    def _refresh_pending(self) -> None:
        try:
            self.pending = self.queue.count()
        except QueueUnavailableError as exc:
            self.logger.error("Cannot count offline queue: %s", exc)


__all__ = ["SyncEngine"]
