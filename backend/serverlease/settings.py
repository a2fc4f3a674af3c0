"""Application-wide settings loaded from the environment."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip()
    return normalized or default


def _env_headers(name: str) -> dict[str, str]:
    raw = _env_str(name)
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("ignoring %s: not valid JSON", name)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("ignoring %s: expected a JSON object", name)
        return {}
    return {str(key): str(value) for key, value in parsed.items()}


def _env_days(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = _env_str(name)
    if not raw:
        return default
    days: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            days.append(int(part))
        except ValueError:
            logger.warning("ignoring %s entry %r", name, part)
    return tuple(days) or default


RuntimeMode = Literal["single_process", "distributed"]
ArchiveBackend = Literal["rclone", "local"]


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime configuration for single vs distributed deployments."""

    mode: RuntimeMode
    redis_url: str | None
    data_dir: Path
    timezone: str

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        raw_mode = (_env_str("BACKEND_MODE", "single_process") or "single_process").lower()
        mode: RuntimeMode = "distributed" if raw_mode == "distributed" else "single_process"
        data_dir = _env_str("DATA_DIR")
        return cls(
            mode=mode,
            redis_url=_env_str("REDIS_URL"),
            data_dir=Path(data_dir) if data_dir else PROJECT_ROOT / "data",
            timezone=_env_str("TIMEZONE", "UTC") or "UTC",
        )


@dataclass(frozen=True)
class PanelSettings:
    """Connection and polling settings for the game panel API."""

    base_url: str
    api_key: str
    headers: dict[str, str] = field(default_factory=dict)
    http_timeout_seconds: float = 30.0
    power_poll_interval_seconds: float = 2.0
    power_poll_timeout_seconds: float = 60.0
    reinstall_poll_timeout_seconds: float = 300.0
    snapshot_poll_interval_seconds: float = 5.0
    snapshot_poll_timeout_seconds: float = 900.0
    user_email_domain: str = "panel.local"

    @classmethod
    def from_env(cls) -> "PanelSettings":
        return cls(
            base_url=(_env_str("PANEL_BASE_URL", "") or "").rstrip("/"),
            api_key=_env_str("PANEL_API_KEY", "") or "",
            headers=_env_headers("PANEL_HEADERS"),
            http_timeout_seconds=max(1.0, _env_float("PANEL_HTTP_TIMEOUT_SECONDS", 30.0)),
            power_poll_interval_seconds=max(
                0.1, _env_float("POWER_POLL_INTERVAL_SECONDS", 2.0)
            ),
            power_poll_timeout_seconds=max(1.0, _env_float("POWER_POLL_TIMEOUT_SECONDS", 60.0)),
            reinstall_poll_timeout_seconds=max(
                1.0, _env_float("REINSTALL_POLL_TIMEOUT_SECONDS", 300.0)
            ),
            snapshot_poll_interval_seconds=max(
                0.1, _env_float("SNAPSHOT_POLL_INTERVAL_SECONDS", 5.0)
            ),
            snapshot_poll_timeout_seconds=max(
                1.0, _env_float("SNAPSHOT_POLL_TIMEOUT_SECONDS", 900.0)
            ),
            user_email_domain=_env_str("PANEL_USER_EMAIL_DOMAIN", "panel.local") or "panel.local",
        )


@dataclass(frozen=True)
class ArchiveSettings:
    """Where archived snapshots go and how they get there."""

    backend: ArchiveBackend
    rclone_path: str
    base_path: str
    scratch_dir: Path
    return_label: str | None

    @classmethod
    def from_env(cls) -> "ArchiveSettings":
        raw_backend = (_env_str("ARCHIVE_BACKEND", "rclone") or "rclone").lower()
        backend: ArchiveBackend = "local" if raw_backend == "local" else "rclone"
        scratch = _env_str("ARCHIVE_SCRATCH_DIR")
        return cls(
            backend=backend,
            rclone_path=_env_str("RCLONE_PATH", "rclone") or "rclone",
            base_path=(_env_str("ARCHIVE_BASE_PATH", "") or "").rstrip("/"),
            scratch_dir=Path(scratch) if scratch else Path(tempfile.gettempdir()),
            return_label=_env_str("ARCHIVE_RETURN_LABEL", "★"),
        )


@dataclass(frozen=True)
class SchedulerSettings:
    """Cadence and behaviour of the periodic lease sweep."""

    enabled: bool
    interval_seconds: int
    auto_return: bool
    reminder_days: tuple[int, ...]

    @classmethod
    def from_env(cls) -> "SchedulerSettings":
        return cls(
            enabled=_env_bool("SCHEDULER_ENABLED", True),
            interval_seconds=max(60, _env_int("SCHEDULER_INTERVAL_SECONDS", 3600)),
            auto_return=_env_bool("SCHEDULER_AUTO_RETURN", False),
            reminder_days=_env_days("SCHEDULER_REMINDER_DAYS", (3, 1)),
        )


class Settings:
    """Container for application settings."""

    def __init__(
        self,
        *,
        runtime: RuntimeSettings,
        panel: PanelSettings,
        archive: ArchiveSettings,
        scheduler: SchedulerSettings,
    ) -> None:
        self.runtime = runtime
        self.panel = panel
        self.archive = archive
        self.scheduler = scheduler

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            runtime=RuntimeSettings.from_env(),
            panel=PanelSettings.from_env(),
            archive=ArchiveSettings.from_env(),
            scheduler=SchedulerSettings.from_env(),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Return a cached Settings instance built from the current environment."""

    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""

    global _SETTINGS
    _SETTINGS = None
