"""Versioned migrations for the offline database.

The version lives in ``PRAGMA user_version``. Every step must keep rows
already sitting in the ``pending`` table: they are writes the user believes
were saved.
"""

from __future__ import annotations

from sqlalchemy import text

from core.settings import SCHEMA_VERSION


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def get_version(conn) -> int:
    return int(conn.execute(text("PRAGMA user_version")).scalar() or 0)


def _set_version(conn, version: int) -> None:
    conn.execute(text(f"PRAGMA user_version = {int(version)}"))


def ensure_pending_table(conn) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS pending (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT NOT NULL,
                method TEXT NOT NULL,
                headers TEXT NOT NULL DEFAULT '{}',
                body_type TEXT NOT NULL,
                body TEXT NOT NULL DEFAULT 'null',
                created_at INTEGER NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0
            )
            """
        )
    )
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_pending_created_at ON pending (created_at)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_pending_url ON pending (url)"))


def ensure_dead_letter_columns(conn) -> None:
    if not _column_exists(conn, "pending", "status"):
        conn.execute(text("ALTER TABLE pending ADD COLUMN status TEXT NOT NULL DEFAULT 'pending'"))
    if not _column_exists(conn, "pending", "last_error"):
        conn.execute(text("ALTER TABLE pending ADD COLUMN last_error TEXT"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_pending_status ON pending (status)"))


MIGRATIONS = {
    1: ensure_pending_table,
    2: ensure_dead_letter_columns,
}


def run_all(engine) -> int:
    with engine.begin() as conn:
        current = get_version(conn)
        if current > SCHEMA_VERSION:
            raise RuntimeError(
                f"Offline database is at version {current}, newer than supported {SCHEMA_VERSION}"
            )
        for version in range(1, SCHEMA_VERSION + 1):
            # idempotent steps: safe to re-run on tables create_all just made
            MIGRATIONS[version](conn)
        if current != SCHEMA_VERSION:
            _set_version(conn, SCHEMA_VERSION)
    return SCHEMA_VERSION


__all__ = ["get_version", "run_all"]
