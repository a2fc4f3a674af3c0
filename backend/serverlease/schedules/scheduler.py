"""Fixed-cadence runner for scheduled lease tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from ..models import utc_now
from .tasks import ScheduledTask

logger = logging.getLogger(__name__)


class Scheduler:
    """Runs registered tasks one after another on every tick.

    A failing task is logged and never stops the remaining tasks or the next
    tick.
    """

    def __init__(
        self,
        tasks: Iterable[ScheduledTask] = (),
        *,
        interval_seconds: float = 3600,
        clock: Callable[[], datetime] = utc_now,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._tasks: list[ScheduledTask] = list(tasks)
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def tasks(self) -> list[ScheduledTask]:
        return list(self._tasks)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def register_task(self, task: ScheduledTask) -> None:
        self._tasks.append(task)

    async def run_due_tasks(self, now: datetime | None = None) -> dict[str, bool]:
        """Run every task once; returns task name -> succeeded.

        A naive ``now`` is taken to be UTC.
        """
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        results: dict[str, bool] = {}
        for task in self._tasks:
            try:
                await task.run(now)
            except Exception:
                logger.exception("scheduled task %s failed", task.name)
                results[task.name] = False
            else:
                results[task.name] = True
        logger.debug("scheduler tick at %s results=%s", now.isoformat(), results)
        return results

    def _seconds_until_next_tick(self) -> float:
        elapsed = self._clock().timestamp() % self.interval_seconds
        return self.interval_seconds - elapsed

    async def _run_forever(self) -> None:
        while True:
            await asyncio.sleep(self._seconds_until_next_tick())
            await self.run_due_tasks()

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run_forever())
        logger.info(
            "scheduler started interval=%ss tasks=%s",
            self.interval_seconds,
            [task.name for task in self._tasks],
        )

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        task = self._loop_task
        self._loop_task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("scheduler stopped")
