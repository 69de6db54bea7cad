# ui/status_bar.py
from __future__ import annotations

import flet as ft

from core.settings import UI
from models.connectivity import ConnectionStatus
from services.offline_status import OfflineSnapshot, OfflineStatus


_STATUS_LABELS = {
    ConnectionStatus.ONLINE: "Online",
    ConnectionStatus.OFFLINE_SERVER: "Server unreachable",
    ConnectionStatus.OFFLINE_INTERNET: "No internet",
}


def status_label(snapshot: OfflineSnapshot) -> str:
    return _STATUS_LABELS[snapshot.status]


def status_color(snapshot: OfflineSnapshot) -> str:
    if snapshot.is_online:
        return UI.online_color
    if snapshot.status == ConnectionStatus.OFFLINE_SERVER:
        return UI.warning_color
    return UI.offline_color


def pending_label(pending: int) -> str:
    if pending == 0:
        return "Offline queue ready"
    return f"{pending} pending sync{'s' if pending > 1 else ''}"


class StatusBar:
    """Connection dot, pending badge and the "Sync now" button."""

    def __init__(self, page: ft.Page, status: OfflineStatus):
        self.page = page
        self.status = status

        self.dot = ft.Container(width=12, height=12, border_radius=6)
        self.label = ft.Text(size=13)
        self.badge = ft.Text(size=12, color="#6B7280")
        self.sync_btn = ft.FilledButton("Sync now", icon=ft.Icons.SYNC, on_click=self.on_sync)

        self.view = ft.Container(
            content=ft.Row(
                [
                    ft.Row([self.dot, self.label], spacing=8),
                    ft.Row([self.badge, self.sync_btn], spacing=12),
                ],
                alignment=ft.MainAxisAlignment.SPACE_BETWEEN,
            ),
            padding=ft.padding.symmetric(horizontal=16, vertical=8),
            bgcolor=ft.Colors.SURFACE,
        )
        self._unsubscribe = status.changes.subscribe(self.render)
        self.render(status.snapshot())

    def render(self, snapshot: OfflineSnapshot) -> None:
        self.dot.bgcolor = status_color(snapshot)
        self.label.value = status_label(snapshot)
        self.badge.value = pending_label(snapshot.pending)
        if snapshot.dead:
            self.badge.value += f" · {snapshot.dead} need attention"
        self.sync_btn.visible = snapshot.pending > 0 and snapshot.is_online
        self.sync_btn.disabled = snapshot.is_syncing
        self.sync_btn.text = "Syncing..." if snapshot.is_syncing else "Sync now"
        if self.view.page:
            self.view.update()

    async def on_sync(self, _):
        await self.status.sync_now()

    def dispose(self) -> None:
        self._unsubscribe()
