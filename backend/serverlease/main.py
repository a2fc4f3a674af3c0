"""FastAPI application bootstrap for the lease broker."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from .api import get_router, register_error_handlers
from .container import (
    build_container,
    shutdown as shutdown_container,
    startup as startup_container,
)
from .env import load_dotenv_if_present
from .startup_checks import run_startup_checks


class _LeaseIdFilter(logging.Filter):
    """Ensure every log record has a lease_id attribute."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "lease_id"):
            record.lease_id = "system"
        return True


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [lease_id=%(lease_id)s] %(name)s: %(message)s",
    )
    root_logger = logging.getLogger()
    lease_filter = _LeaseIdFilter()
    for handler in root_logger.handlers:
        handler.addFilter(lease_filter)


def create_app() -> FastAPI:
    """Construct the FastAPI application."""
    _configure_logging()
    load_dotenv_if_present()

    from .settings import get_settings

    settings = get_settings()
    container = build_container(settings=settings)

    app = FastAPI(title="serverlease")
    app.state.container = container
    register_error_handlers(app)
    app.include_router(get_router(container))

    @app.on_event("startup")
    async def _startup() -> None:
        run_startup_checks(settings)
        # In distributed mode the scheduler runs in its own worker process.
        startup_container(
            container,
            start_scheduler=settings.scheduler.enabled
            and settings.runtime.mode == "single_process",
        )
        logging.getLogger(__name__).info(
            "lease broker ready mode=%s resources=%s",
            settings.runtime.mode,
            len(container.pool.list_bindings()),
        )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await shutdown_container(container)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


_APP: FastAPI | None = None


def get_app() -> FastAPI:
    """Accessor for ASGI servers expecting an `app` variable."""

    global _APP
    if _APP is None:
        _APP = create_app()
    return _APP


def __getattr__(name: str):  # pragma: no cover
    if name == "app":
        return get_app()
    raise AttributeError(name)
