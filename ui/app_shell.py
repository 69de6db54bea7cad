# ui/app_shell.py
from __future__ import annotations

import flet as ft

from core.settings import UI
from services.runtime import OfflineRuntime

from .notifications import Toaster
from .pages.offline_test import OfflineTestPage
from .pages.queue import QueuePage
from .status_bar import StatusBar


class AppShell:
    def __init__(self, page: ft.Page, runtime: OfflineRuntime):
        self.page = page
        self.runtime = runtime

        self.page.title = UI.app_title
        self.page.horizontal_alignment = ft.CrossAxisAlignment.STRETCH
        self.page.vertical_alignment = ft.MainAxisAlignment.START

        self.status_bar = StatusBar(page, runtime.status)
        self.toaster = Toaster(page, runtime.status.notifications)

        self._form = OfflineTestPage(self)
        self._queue = QueuePage(self)

        self.content = ft.Container(expand=True)

        self.nav = ft.NavigationRail(
            selected_index=0,
            label_type=ft.NavigationRailLabelType.ALL,
            min_width=90,
            group_alignment=-0.9,
            on_change=self.on_nav_change,
            destinations=[
                ft.NavigationRailDestination(
                    icon=ft.Icons.EDIT_NOTE_OUTLINED,
                    selected_icon=ft.Icons.EDIT_NOTE,
                    label="Form",
                ),
                ft.NavigationRailDestination(
                    icon=ft.Icons.CLOUD_QUEUE_OUTLINED,
                    selected_icon=ft.Icons.CLOUD_QUEUE,
                    label="Queue",
                ),
            ],
        )

        self.root = ft.Column(
            [
                self.status_bar.view,
                ft.Row(
                    controls=[self.nav, ft.VerticalDivider(width=1), self.content],
                    expand=True,
                    spacing=0,
                ),
            ],
            expand=True,
            spacing=0,
        )

    async def mount(self):
        self.page.controls.clear()
        self.page.add(self.root)
        self.content.content = self._form.view
        self.page.update()
        await self._form.load()

    async def on_nav_change(self, e: ft.ControlEvent):
        idx = int(e.control.selected_index)
        if idx == 0:
            self.content.content = self._form.view
            self.page.update()
            await self._form.load()
        else:
            self.content.content = self._queue.view
            self._queue.load()
            self.page.update()

    async def shutdown(self, *_):
        self.status_bar.dispose()
        self.toaster.dispose()
        self._queue.dispose()
        await self.runtime.close()
