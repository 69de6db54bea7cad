# main.py
import flet as ft

from core.settings import APP_NAME, OFFLINE, UI
from services.runtime import OfflineRuntime
from ui.app_shell import AppShell


async def main(page: ft.Page):
    page.title = UI.app_title
    page.theme_mode = UI.theme_mode
    page.theme = ft.Theme(color_scheme_seed=UI.color_scheme_seed)
    page.appbar = ft.AppBar(title=ft.Text(APP_NAME), center_title=False)
    page.padding = 0
    page.window_min_width = UI.window_min_width
    page.window_min_height = UI.window_min_height

    runtime = OfflineRuntime(OFFLINE)
    await runtime.start()
    shell = AppShell(page, runtime)
    page.on_disconnect = shell.shutdown
    await shell.mount()


def run():
    ft.app(target=main)


if __name__ == "__main__":
    run()
