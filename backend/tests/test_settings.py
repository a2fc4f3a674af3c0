"""Environment-driven settings and startup checks."""

from pathlib import Path

import pytest

from serverlease.settings import Settings, get_settings, reset_settings
from serverlease.startup_checks import run_startup_checks


@pytest.fixture(autouse=True)
def _clean_settings():
    reset_settings()
    yield
    reset_settings()


def test_defaults(monkeypatch):
    for name in ("BACKEND_MODE", "PANEL_HEADERS", "SCHEDULER_REMINDER_DAYS", "ARCHIVE_BACKEND"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.runtime.mode == "single_process"
    assert settings.panel.power_poll_interval_seconds == 2.0
    assert settings.panel.power_poll_timeout_seconds == 60.0
    assert settings.archive.backend == "rclone"
    assert settings.scheduler.reminder_days == (3, 1)


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("BACKEND_MODE", "distributed")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("PANEL_BASE_URL", "https://panel.example/")
    monkeypatch.setenv("PANEL_HEADERS", '{"CF-Access-Client-Id": "abc"}')
    monkeypatch.setenv("SCHEDULER_REMINDER_DAYS", "7, 2,x")
    monkeypatch.setenv("SCHEDULER_INTERVAL_SECONDS", "5")

    settings = get_settings()

    assert settings is get_settings()
    assert settings.runtime.mode == "distributed"
    assert settings.runtime.data_dir == Path(tmp_path)
    assert settings.panel.base_url == "https://panel.example"
    assert settings.panel.headers == {"CF-Access-Client-Id": "abc"}
    assert settings.scheduler.reminder_days == (7, 2)
    assert settings.scheduler.interval_seconds == 60


def test_startup_checks_require_panel(monkeypatch):
    monkeypatch.delenv("SKIP_STARTUP_CHECKS", raising=False)
    monkeypatch.setenv("PANEL_BASE_URL", "")
    monkeypatch.setenv("PANEL_API_KEY", "")

    with pytest.raises(RuntimeError, match="PANEL_BASE_URL"):
        run_startup_checks(Settings.from_env())


def test_startup_checks_local_archive(monkeypatch, tmp_path):
    monkeypatch.delenv("SKIP_STARTUP_CHECKS", raising=False)
    monkeypatch.setenv("BACKEND_MODE", "single_process")
    monkeypatch.setenv("PANEL_BASE_URL", "https://panel.example")
    monkeypatch.setenv("PANEL_API_KEY", "key")
    monkeypatch.setenv("ARCHIVE_BACKEND", "local")
    monkeypatch.setenv("ARCHIVE_BASE_PATH", str(tmp_path / "archive"))
    monkeypatch.setenv("ARCHIVE_SCRATCH_DIR", str(tmp_path / "scratch"))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))

    run_startup_checks(Settings.from_env())

    assert (tmp_path / "data" / "leases").is_dir()
    assert (tmp_path / "archive").is_dir()
