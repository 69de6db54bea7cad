# ui/pages/queue.py
from __future__ import annotations

import flet as ft

from datetime_utils import format_epoch_ms
from models.pending_item import PendingItem
from ui.dialogs import confirm
from ui.notifications import show_toast


def describe(item: PendingItem) -> str:
    return f"#{item.id} {item.method} {item.url} ({item.body_type})"


class QueuePage:
    def __init__(self, app):
        self.app = app
        self.status = app.runtime.status
        self.queue = app.runtime.queue

        self.summary = ft.Text()
        self.pending_list = ft.ListView(spacing=4, height=200)
        self.dead_list = ft.ListView(spacing=4, height=160)
        self.log_view = ft.Text("", selectable=True, size=11)

        self.sync_btn = ft.FilledButton("Sync now", icon=ft.Icons.SYNC, on_click=self.sync_now)
        self.check_btn = ft.OutlinedButton(
            "Check connection", icon=ft.Icons.NETWORK_CHECK, on_click=self.check_connection
        )
        self.refresh_log_btn = ft.TextButton("Refresh log", icon=ft.Icons.ARTICLE, on_click=self.refresh_log)

        content = ft.Column(
            controls=[
                ft.Text("Offline queue", size=24, weight=ft.FontWeight.BOLD),
                self.summary,
                ft.Row([self.sync_btn, self.check_btn], spacing=12),
                ft.Text("Pending", size=18, weight=ft.FontWeight.W_600),
                self.pending_list,
                ft.Text("Needs attention", size=18, weight=ft.FontWeight.W_600),
                self.dead_list,
                ft.Column([
                    ft.Text("Sync log", size=18, weight=ft.FontWeight.W_600),
                    ft.Container(self.log_view, height=180, padding=10, bgcolor=ft.Colors.SURFACE),
                    self.refresh_log_btn,
                ], spacing=8),
            ],
            expand=True,
            spacing=12,
            scroll=ft.ScrollMode.AUTO,
        )

        self.view = ft.Container(content=content, expand=True, padding=20)
        self._unsubscribe = self.status.changes.subscribe(lambda _s: self.load())

    def load(self):
        snap = self.status.snapshot()
        self.summary.value = (
            f"Connection: {snap.status.value} · pending: {snap.pending} · dead-letter: {snap.dead}"
            + (" · syncing…" if snap.is_syncing else "")
        )
        self.sync_btn.disabled = snap.is_syncing or not snap.is_online

        self.pending_list.controls = [
            ft.Text(
                f"{describe(item)} · {format_epoch_ms(item.created_at)} · retries {item.retry_count}"
                + (f" · {item.last_error}" if item.last_error else ""),
                size=12,
            )
            for item in self.queue.list_pending()
        ]
        self.dead_list.controls = [self._dead_row(item) for item in self.queue.list_dead()]
        if self.view.page:
            self.view.update()

    def _dead_row(self, item: PendingItem) -> ft.Control:
        return ft.Row(
            [
                ft.Text(f"{describe(item)} · {item.last_error or ''}", size=12, expand=True),
                ft.TextButton("Retry", on_click=lambda e, i=item.id: self.requeue(i)),
                ft.TextButton("Discard", on_click=lambda e, i=item: self.discard(i)),
            ]
        )

    def requeue(self, item_id: int):
        self.queue.requeue(item_id)
        self.app.page.run_task(self.status.sync_now)

    def discard(self, item: PendingItem):
        confirm(
            self.app.page,
            title="Discard change?",
            message=f"{describe(item)} will never reach the server.",
            on_confirm=lambda: self.queue.discard(item.id),
        )

    async def sync_now(self, _):
        result = await self.status.sync_now()
        if result.skipped:
            show_toast(self.app.page, "Sync skipped", "Offline or a sync is already running.", level="warning")

    async def check_connection(self, _):
        state = await self.status.check_connection()
        show_toast(self.app.page, "Connection", state.status.value)

    def refresh_log(self, _):
        self.log_view.value = self.status.read_sync_log()
        self.app.page.update()

    def dispose(self):
        self._unsubscribe()
