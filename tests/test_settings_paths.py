from pathlib import Path

from core import settings
from datetime_utils import UTC, format_epoch_ms, from_epoch_ms, now_ms


def test_linux_data_dir_with_xdg():
    env = {"XDG_DATA_HOME": "/tmp/xdg"}
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="linux",
        env=env,
        home=Path("/home/test"),
    )
    assert result == Path("/tmp/xdg") / settings.APP_NAME


def test_linux_data_dir_default_home():
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="linux",
        env={},
        home=Path("/home/test"),
    )
    assert result == Path("/home/test/.local/share") / settings.APP_NAME


def test_macos_data_dir():
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="darwin",
        env={},
        home=Path("/Users/test"),
    )
    expected = Path("/Users/test/Library/Application Support") / settings.APP_NAME
    assert result == expected


def test_windows_data_dir_appdata():
    env = {"APPDATA": "C:/Users/test/AppData/Roaming"}
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="win32",
        env=env,
        home=Path("C:/Users/test"),
    )
    expected = Path(env["APPDATA"]) / settings.APP_NAME
    assert result == expected


def test_runtime_paths_inside_data_dir():
    assert settings.DB_PATH.parent == settings.DATA_DIR
    assert settings.LOG_DIR.parent == settings.DATA_DIR
    assert settings.SYNC_LOG_PATH.parent == settings.LOG_DIR


def test_defaults_match_documented_values():
    cfg = settings.load_settings(env={})
    assert cfg.queue.max_file_size == 3_000_000
    assert cfg.queue.max_retries == 0
    assert cfg.connectivity.poll_interval == 4.0
    assert cfg.connectivity.health_path == "/api/health"
    assert cfg.sync.notify_debounce == 1.5
    assert cfg.worker.background_sync_tag == "sync-pending"


def test_env_overrides_are_typed():
    cfg = settings.load_settings(
        env={
            "HIVE_CONNECTIVITY_BASE_URL": "https://admin.example.com",
            "HIVE_CONNECTIVITY_PROBE_TIMEOUT": "3",
            "HIVE_QUEUE_MAX_RETRIES": "5",
            "HIVE_QUEUE_REQUEUE_CLIENT_ERRORS": "false",
            "HIVE_WORKER_SHELL_ASSETS": "/, /offline.html",
        }
    )
    assert cfg.connectivity.base_url == "https://admin.example.com"
    assert cfg.connectivity.probe_timeout == 3.0
    assert cfg.queue.max_retries == 5
    assert cfg.queue.requeue_client_errors is False
    assert cfg.worker.shell_assets == ("/", "/offline.html")


def test_epoch_ms_helpers():
    before = now_ms()
    dt = from_epoch_ms(before)
    assert dt.tzinfo is UTC
    assert abs(dt.timestamp() * 1000 - before) < 1
    assert from_epoch_ms(None) is None
    assert format_epoch_ms(None) == "—"
    assert now_ms() >= before
