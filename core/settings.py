"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(os.environ if env is None else env)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "Hive"


DATA_DIR = Path(os.environ.get("HIVE_DATA_DIR") or get_default_data_dir(APP_NAME))
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "offline.db"
SYNC_LOG_PATH = LOG_DIR / "sync.log"

# Bumped whenever the offline tables change shape; see storage.migrations.
SCHEMA_VERSION = 2

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True)
class ConnectivitySettings:
    base_url: str = "http://localhost:3000"
    health_path: str = "/api/health"
    health_fallback_path: str = "/api/offline-test"
    internet_probe_url: str = "https://www.google.com/favicon.ico"
    probe_timeout: float = 2.5
    poll_interval: float = 4.0
    watch_link: bool = True
    link_probe_host: str = "1.1.1.1"


@dataclass(frozen=True)
class QueueSettings:
    max_file_size: int = 3_000_000
    max_retries: int = 0
    requeue_client_errors: bool = True


@dataclass(frozen=True)
class SyncSettings:
    request_timeout: float = 10.0
    auto_sync_delay: float = 1.0
    periodic_interval: float = 30.0
    notify_debounce: float = 1.5
    worker_ping_interval: float = 3.0


@dataclass(frozen=True)
class WorkerSettings:
    cache_name: str = "hive-v4"
    shell_assets: tuple[str, ...] = ("/", "/icon", "/manifest.json", "/offline.html")
    offline_page: str = "/offline.html"
    api_prefix: str = "/api/"
    background_sync_tag: str = "sync-pending"


@dataclass(frozen=True)
class ToastSettings:
    connection_ms: int = 3000
    sync_ms: int = 2000
    error_ms: int = 5000


@dataclass(frozen=True)
class OfflineSettings:
    connectivity: ConnectivitySettings = ConnectivitySettings()
    queue: QueueSettings = QueueSettings()
    sync: SyncSettings = SyncSettings()
    worker: WorkerSettings = WorkerSettings()
    toast: ToastSettings = ToastSettings()


def _coerce(raw: str, current):
    if isinstance(current, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, tuple):
        return tuple(part.strip() for part in raw.split(",") if part.strip())
    return raw


def _apply_env(section, prefix: str, environ: Mapping[str, str]):
    changes = {}
    for f in fields(section):
        key = f"{prefix}_{f.name}".upper()
        if key in environ:
            changes[f.name] = _coerce(environ[key], getattr(section, f.name))
    return replace(section, **changes) if changes else section


def load_settings(env: Optional[Mapping[str, str]] = None) -> OfflineSettings:
    """Build settings, applying ``HIVE_<SECTION>_<FIELD>`` overrides.

    ``HIVE_CONNECTIVITY_BASE_URL=https://admin.example.com`` for instance
    points every probe and relative request at another server.
    """

    environ = dict(os.environ if env is None else env)
    base = OfflineSettings()
    return OfflineSettings(
        connectivity=_apply_env(base.connectivity, "HIVE_CONNECTIVITY", environ),
        queue=_apply_env(base.queue, "HIVE_QUEUE", environ),
        sync=_apply_env(base.sync, "HIVE_SYNC", environ),
        worker=_apply_env(base.worker, "HIVE_WORKER", environ),
        toast=_apply_env(base.toast, "HIVE_TOAST", environ),
    )


@dataclass(frozen=True)
class UISettings:
    app_title: str = APP_NAME
    theme_mode: str = "system"
    color_scheme_seed: str = "#F59E0B"
    window_min_width: int = 720
    window_min_height: int = 520
    online_color: str = "#22C55E"
    offline_color: str = "#EF4444"
    warning_color: str = "#F59E0B"


UI = UISettings()
OFFLINE = load_settings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "DB_PATH",
    "SYNC_LOG_PATH",
    "SCHEMA_VERSION",
    "MUTATING_METHODS",
    "ConnectivitySettings",
    "QueueSettings",
    "SyncSettings",
    "WorkerSettings",
    "ToastSettings",
    "OfflineSettings",
    "UISettings",
    "UI",
    "OFFLINE",
    "get_default_data_dir",
    "load_settings",
]
