"""Periodic lease sweeps run by the scheduler."""

from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Protocol

from ..events import EventBus
from ..lifecycle import LeaseLifecycle
from ..models import Lease, LeaseStatus

logger = logging.getLogger(__name__)


class ScheduledTask(Protocol):
    name: str

    async def run(self, now: datetime) -> None:
        """Do one sweep as of ``now``."""


def _active_with_end(lifecycle: LeaseLifecycle) -> list[Lease]:
    return [lease for lease in lifecycle.list([LeaseStatus.ACTIVE]) if lease.end_at is not None]


class AutoReturnTask:
    """Handle active leases whose end time has passed.

    By default an overdue lease is only announced (once per lease per local
    day); with ``auto_return`` it is returned through the lifecycle.
    """

    name = "auto_return"

    def __init__(
        self,
        lifecycle: LeaseLifecycle,
        bus: EventBus,
        *,
        auto_return: bool = False,
        tz: tzinfo = timezone.utc,
    ):
        self.lifecycle = lifecycle
        self.bus = bus
        self.auto_return = auto_return
        self.tz = tz
        self._announced: set[tuple[int, str]] = set()

    async def run(self, now: datetime) -> None:
        for lease in _active_with_end(self.lifecycle):
            assert lease.end_at is not None
            if lease.end_at >= now:
                continue
            if self.auto_return:
                try:
                    await self.lifecycle.initiate_return(lease.id)
                except Exception:
                    logger.exception("automatic return failed", extra={"lease_id": lease.id})
                continue

            key = (lease.id, now.astimezone(self.tz).date().isoformat())
            if key in self._announced:
                continue
            self._announced.add(key)
            await self.bus.emit(
                "lease.overdue",
                lease.id,
                {
                    "owner_id": lease.owner_id,
                    "resource_id": lease.assigned_resource_id,
                    "end_at": lease.end_at.isoformat(),
                },
            )


class ReminderTask:
    """Remind owners when an active lease is a few calendar days from its end."""

    name = "reminder"

    def __init__(
        self,
        lifecycle: LeaseLifecycle,
        bus: EventBus,
        *,
        days: tuple[int, ...] = (3, 1),
        tz: tzinfo = timezone.utc,
    ):
        self.lifecycle = lifecycle
        self.bus = bus
        self.days = frozenset(days)
        self.tz = tz
        self._sent: set[tuple[int, int, str]] = set()

    async def run(self, now: datetime) -> None:
        today = now.astimezone(self.tz).date()
        for lease in _active_with_end(self.lifecycle):
            assert lease.end_at is not None
            days_left = (lease.end_at.astimezone(self.tz).date() - today).days
            if days_left < 0:
                logger.warning(
                    "lease is %s day(s) past its end", -days_left, extra={"lease_id": lease.id}
                )
                continue
            if days_left not in self.days:
                continue
            key = (lease.id, days_left, lease.end_at.isoformat())
            if key in self._sent:
                continue
            self._sent.add(key)
            await self.bus.emit(
                "lease.reminder",
                lease.id,
                {
                    "owner_id": lease.owner_id,
                    "collaborators": list(lease.collaborators),
                    "days_left": days_left,
                    "end_at": lease.end_at.isoformat(),
                },
            )
