"""Startup validation to keep deployments predictable."""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path

from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _ensure_dir_writable(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    test_file = path / ".startup_write_test"
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError as exc:
        raise RuntimeError(f"Directory {path} is not writable: {exc}") from exc
    finally:
        if test_file.exists():
            try:
                test_file.unlink()
            except OSError:
                pass


def run_startup_checks(settings: Settings | None = None) -> None:
    """Fail fast when configuration or filesystem are invalid."""
    if os.getenv("SKIP_STARTUP_CHECKS") == "1":
        logger.warning("Startup checks skipped via SKIP_STARTUP_CHECKS=1")
        return

    settings = settings or get_settings()

    if not settings.panel.base_url:
        raise RuntimeError("Missing required environment variable: PANEL_BASE_URL")
    if not settings.panel.api_key:
        raise RuntimeError("Missing required environment variable: PANEL_API_KEY")

    if settings.archive.backend == "rclone":
        if not settings.archive.base_path:
            raise RuntimeError("ARCHIVE_BASE_PATH is required when ARCHIVE_BACKEND=rclone")
        if shutil.which(settings.archive.rclone_path) is None:
            raise RuntimeError(f"rclone executable not found: {settings.archive.rclone_path!r}")
    elif settings.archive.base_path:
        _ensure_dir_writable(Path(settings.archive.base_path))
    _ensure_dir_writable(settings.archive.scratch_dir)

    if settings.runtime.mode == "single_process":
        data_dir = settings.runtime.data_dir
        for directory in (data_dir, data_dir / "leases", data_dir / "events"):
            _ensure_dir_writable(directory)
    else:
        redis_url = settings.runtime.redis_url
        if not redis_url:
            raise RuntimeError("REDIS_URL is required when BACKEND_MODE=distributed")
        try:
            from redis import Redis

            client = Redis.from_url(redis_url, decode_responses=True)
            client.ping()
        except Exception as exc:
            raise RuntimeError(f"Unable to connect to REDIS_URL={redis_url!r}: {exc}") from exc

    logger.info("Startup checks passed. Environment and runtime dependencies are valid.")


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    from .env import load_dotenv_if_present

    load_dotenv_if_present()
    try:
        run_startup_checks()
    except Exception as exc:  # pragma: no cover - CLI guard
        logger.error("Startup check failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
