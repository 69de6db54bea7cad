# ui/notifications.py
from __future__ import annotations

import flet as ft

from core.settings import UI
from services.offline_status import Notification


_LEVEL_COLORS = {
    "success": UI.online_color,
    "warning": UI.warning_color,
    "error": UI.offline_color,
}


def show_toast(page: ft.Page, title: str, description: str = "", *, level: str = "info", duration_ms: int = 3000):
    lines = [ft.Text(title, weight=ft.FontWeight.W_600)]
    if description:
        lines.append(ft.Text(description, size=12))
    page.open(
        ft.SnackBar(
            ft.Column(lines, spacing=2, tight=True),
            bgcolor=_LEVEL_COLORS.get(level),
            duration=duration_ms,
        )
    )


class Toaster:
    """Turns offline notifications into snack bars."""

    def __init__(self, page: ft.Page, notifications):
        self.page = page
        self._unsubscribe = notifications.subscribe(self.on_notification)

    def on_notification(self, notice: Notification) -> None:
        show_toast(
            self.page,
            notice.title,
            notice.description,
            level=notice.level,
            duration_ms=notice.duration_ms,
        )

    def dispose(self) -> None:
        self._unsubscribe()
