import flet as ft


def confirm(page: ft.Page, *, title: str, message: str, on_confirm, confirm_label: str = "Delete"):
    """Modal yes/no dialog; ``on_confirm`` runs only after the user agrees."""

    dlg = ft.AlertDialog(modal=True, title=ft.Text(title), content=ft.Text(message))

    def _yes(e):
        page.close(dlg)
        on_confirm()

    dlg.actions = [
        ft.TextButton("Cancel", on_click=lambda e: page.close(dlg)),
        ft.FilledButton(confirm_label, on_click=_yes),
    ]
    dlg.actions_alignment = ft.MainAxisAlignment.END
    page.open(dlg)
    return dlg
