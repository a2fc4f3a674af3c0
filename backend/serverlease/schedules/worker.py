"""Standalone scheduler worker.

Runs the periodic lease sweeps outside the API process, which is how
distributed deployments keep exactly one scheduler alive.
"""

from __future__ import annotations

import asyncio
import logging

from ..container import (
    build_container,
    shutdown as shutdown_container,
    startup as startup_container,
)
from ..env import load_dotenv_if_present
from ..settings import get_settings

logger = logging.getLogger(__name__)


async def run_scheduler_worker() -> None:
    load_dotenv_if_present()
    settings = get_settings()
    if not settings.scheduler.enabled:
        logger.warning("scheduler worker exiting: SCHEDULER_ENABLED is off")
        return

    container = build_container(settings=settings)
    startup_container(container, start_scheduler=True)
    logger.info("scheduler worker started mode=%s", settings.runtime.mode)
    try:
        # All work happens in the scheduler's background task; keep process alive.
        await asyncio.Event().wait()
    finally:
        await shutdown_container(container)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_scheduler_worker())


if __name__ == "__main__":  # pragma: no cover
    main()
