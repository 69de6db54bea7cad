from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Set

from core.log import get_logger, read_log_tail
from core.settings import OFFLINE, SyncSettings, ToastSettings
from models.connectivity import ConnectionStatus, ConnectivityState
from models.messages import ConnectionVerdict, TriggerSync, WorkerMessage
from models.sync_result import SyncResult
from services.channel import Channel
from services.connectivity import ConnectivityProber
from services.pending_queue import PendingQueue, QueueUnavailableError
from services.service_worker import ServiceWorkerContainer
from services.sync_engine import SyncEngine


class NotificationKind(Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    SYNCED = "synced"
    PARTIAL = "partial"
    SYNC_FAILED = "sync-failed"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    level: str  # "info" | "success" | "warning" | "error"
    title: str
    description: str
    duration_ms: int


@dataclass(frozen=True)
class OfflineSnapshot:
    has_internet: bool
    has_server: bool
    pending: int
    dead: int
    is_syncing: bool

    @property
    def is_online(self) -> bool:
        return self.has_internet and self.has_server

    @property
    def status(self) -> ConnectionStatus:
        return ConnectivityState(self.has_internet, self.has_server).status


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


class OfflineStatus:
    """Reactive facade over the prober, the queue and the sync engine.

    Several UI components can subscribe to one instance; probing and syncing
    happen once no matter how many listeners there are.
    """

    def __init__(
        self,
        prober: ConnectivityProber,
        queue: PendingQueue,
        engine: SyncEngine,
        worker: Optional[ServiceWorkerContainer] = None,
        settings: Optional[SyncSettings] = None,
        toast: Optional[ToastSettings] = None,
    ) -> None:
        self.prober = prober
        self.queue = queue
        self.engine = engine
        self.worker = worker or ServiceWorkerContainer()
        self.settings = settings or OFFLINE.sync
        self.toast = toast or OFFLINE.toast
        self.logger = get_logger("hive.ui")

        self.changes: Channel[OfflineSnapshot] = Channel("offline-status")
        self.notifications: Channel[Notification] = Channel("notifications")

        self.pending = 0
        self.dead = 0
        self._status: Optional[ConnectionStatus] = None
        self._last_notice: Optional[float] = None
        self._auto_task: Optional[asyncio.Task] = None
        self._periodic_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribers = []
        self._started = False

    # ------------------------------------------------------------------
    # state
    @property
    def has_internet(self) -> bool:
        return self.prober.state.has_internet

    @property
    def has_server(self) -> bool:
        return self.prober.state.has_server

    @property
    def is_online(self) -> bool:
        return self.prober.state.is_online

    @property
    def status(self) -> ConnectionStatus:
        return self.prober.state.status

    @property
    def is_syncing(self) -> bool:
        return self.engine.is_syncing

    def snapshot(self) -> OfflineSnapshot:
        return OfflineSnapshot(
            has_internet=self.has_internet,
            has_server=self.has_server,
            pending=self.pending,
            dead=self.dead,
            is_syncing=self.is_syncing,
        )

    def _publish(self) -> None:
        self.changes.publish(self.snapshot())

    def refresh_pending(self) -> int:
        try:
            self.pending = self.queue.count()
            self.dead = self.queue.dead_count()
        except QueueUnavailableError as exc:
            self.logger.error("Cannot count offline queue: %s", exc)
        return self.pending

    # ------------------------------------------------------------------
    # lifecycle
    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.refresh_pending()
        self._unsubscribers = [
            self.prober.changes.subscribe(self._on_connectivity),
            self.queue.subscribe(self._on_queue),
            self.engine.changes.subscribe(lambda _syncing: self._publish()),
            self.engine.completed.subscribe(self._on_sync_result),
            self.worker.on_message(self._on_worker_message),
        ]
        await self.prober.check()
        # the first verdict is a baseline, not a transition worth a toast
        self._status = self.prober.state.status
        if self.is_online and self.pending > 0:
            # leftovers from an earlier run that was interrupted
            self._schedule_auto_sync()
        self.prober.start()
        if self.settings.periodic_interval > 0:
            self._periodic_task = asyncio.get_running_loop().create_task(self._periodic())
        if self.settings.worker_ping_interval > 0:
            self._ping_task = asyncio.get_running_loop().create_task(self._ping_worker())
        self._publish()

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.prober.stop()
        for task in (self._auto_task, self._periodic_task, self._ping_task, *self._tasks):
            if task is not None:
                task.cancel()
        self._auto_task = self._periodic_task = self._ping_task = None
        self._tasks.clear()
        self._started = False

    # ------------------------------------------------------------------
    # imperative API
    async def check_connection(self) -> ConnectivityState:
        return await self.prober.check()

    async def sync_now(self) -> SyncResult:
        return await self.engine.sync()

    def read_sync_log(self, lines: int = 100) -> str:
        return read_log_tail(lines)

    # ------------------------------------------------------------------
    # reactions
    def _on_queue(self, count: int) -> None:
        self.pending = count
        try:
            self.dead = self.queue.dead_count()
        except QueueUnavailableError as exc:
            self.logger.error("Cannot count dead-letter items: %s", exc)
        self._publish()

    def _on_connectivity(self, state: ConnectivityState) -> None:
        previous = self._status
        self._status = state.status
        self._publish()
        if previous is None or previous == state.status:
            return

        went_online = state.is_online and previous != ConnectionStatus.ONLINE
        if went_online:
            self._notify_connection(
                Notification(
                    NotificationKind.ONLINE,
                    "success",
                    "Back online",
                    f"Syncing {_plural(self.pending, 'pending change')}…" if self.pending else "All set.",
                    self.toast.connection_ms,
                )
            )
            if self.pending > 0:
                self._schedule_auto_sync()
        elif not state.is_online:
            if not state.has_internet:
                detail = "No internet connection. Changes will be saved locally."
            else:
                detail = "Internet is ok, but server is unreachable. Changes will be saved locally."
            self._notify_connection(
                Notification(
                    NotificationKind.OFFLINE, "error", "You're offline", detail, self.toast.error_ms
                )
            )

    def _notify_connection(self, notice: Notification) -> None:
        now = asyncio.get_running_loop().time()
        if self._last_notice is not None and now - self._last_notice < self.settings.notify_debounce:
            self.logger.debug("Suppressed %s notification", notice.kind.value)
            return
        self._last_notice = now
        self.notifications.publish(notice)

    def _on_sync_result(self, result: SyncResult) -> None:
        self.refresh_pending()
        self._publish()
        if result.skipped or (result.synced == 0 and result.failed == 0):
            return
        if result.failed == 0:
            notice = Notification(
                NotificationKind.SYNCED,
                "success",
                "Changes synced",
                f"{_plural(result.synced, 'queued change')} reached the server.",
                self.toast.sync_ms,
            )
        elif result.synced > 0:
            notice = Notification(
                NotificationKind.PARTIAL,
                "warning",
                "Partially synced",
                f"{result.synced} synced, {result.failed} still pending.",
                self.toast.error_ms,
            )
        else:
            notice = Notification(
                NotificationKind.SYNC_FAILED,
                "error",
                "Sync failed",
                f"{_plural(result.failed, 'change')} could not be sent. Will retry.",
                self.toast.error_ms,
            )
        self.notifications.publish(notice)

    def _on_worker_message(self, message: WorkerMessage) -> None:
        if isinstance(message, TriggerSync):
            self._spawn(self.engine.sync())
        elif isinstance(message, ConnectionVerdict):
            if message.online:
                self.prober.check()
            else:
                self.prober.force_offline()

    # ------------------------------------------------------------------
    # background work
    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_auto_sync(self) -> None:
        if self._auto_task is not None and not self._auto_task.done():
            return

        async def _later():
            # give the OS a moment to finish reconnecting
            await asyncio.sleep(self.settings.auto_sync_delay)
            if self.is_online and self.refresh_pending() > 0:
                await self.engine.sync()

        self._auto_task = self._spawn(_later())

    async def _periodic(self) -> None:
        while True:
            await asyncio.sleep(self.settings.periodic_interval)
            if self.is_online and self.pending > 0 and not self.is_syncing:
                try:
                    await self.engine.sync()
                except Exception:
                    self.logger.exception("Periodic sync crashed")

    async def _ping_worker(self) -> None:
        # catches the link dropping while the app sits idle
        while True:
            await asyncio.sleep(self.settings.worker_ping_interval)
            self.worker.ping()

    async def settle(self) -> None:
        """Wait for auto/relayed syncs spawned so far."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["Notification", "NotificationKind", "OfflineSnapshot", "OfflineStatus"]
