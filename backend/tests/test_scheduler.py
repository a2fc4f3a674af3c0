"""Scheduler tick isolation and the reminder / overdue sweeps."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import NOW
from serverlease.errors import RemoteOperationFailed
from serverlease.models import Lease, LeaseStatus
from serverlease.schedules import AutoReturnTask, ReminderTask, Scheduler


def _active(lease_id: int, end_in: timedelta) -> Lease:
    return Lease(
        id=lease_id,
        name=f"lease {lease_id}",
        requester_id="r",
        owner_id="owner",
        status=LeaseStatus.ACTIVE,
        desired_duration_days=7,
        assigned_resource_id=f"phys-{lease_id}",
        start_at=NOW - timedelta(days=7),
        end_at=NOW + end_in,
        collaborators=["u"],
    )


def _lifecycle(*leases: Lease) -> MagicMock:
    lifecycle = MagicMock()
    lifecycle.list.return_value = list(leases)
    lifecycle.initiate_return = AsyncMock()
    return lifecycle


class _Task:
    def __init__(self, name: str, error: Exception | None = None):
        self.name = name
        self.error = error
        self.seen: list = []

    async def run(self, now):
        self.seen.append(now)
        if self.error:
            raise self.error


class TestScheduler:
    @pytest.mark.asyncio
    async def test_failing_task_does_not_block_others(self):
        broken = _Task("broken", RuntimeError("boom"))
        healthy = _Task("healthy")
        scheduler = Scheduler([broken], interval_seconds=3600)
        scheduler.register_task(healthy)

        results = await scheduler.run_due_tasks(NOW)
        again = await scheduler.run_due_tasks(NOW + timedelta(hours=1))

        assert results == {"broken": False, "healthy": True}
        assert again == results
        assert healthy.seen == [NOW, NOW + timedelta(hours=1)]

    @pytest.mark.asyncio
    async def test_background_loop_ticks_and_stops(self):
        task = _Task("tick")
        scheduler = Scheduler([task], interval_seconds=0.02)

        scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()
        ticks = len(task.seen)
        await asyncio.sleep(0.05)

        assert ticks >= 2
        assert len(task.seen) == ticks
        assert not scheduler.running

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            Scheduler(interval_seconds=0)


class TestReminderTask:
    @pytest.mark.asyncio
    async def test_reminds_once_per_threshold(self):
        soon = _active(1, timedelta(days=3))
        later = _active(2, timedelta(days=5))
        bus = AsyncMock()
        task = ReminderTask(_lifecycle(soon, later), bus, days=(3, 1))

        await task.run(NOW)
        await task.run(NOW + timedelta(hours=1))

        bus.emit.assert_awaited_once()
        event_type, lease_id, data = bus.emit.await_args.args
        assert (event_type, lease_id, data["days_left"]) == ("lease.reminder", 1, 3)

    @pytest.mark.asyncio
    async def test_overdue_lease_is_logged_not_reminded(self, caplog):
        overdue = _active(3, -timedelta(days=2))
        bus = AsyncMock()

        await ReminderTask(_lifecycle(overdue), bus).run(NOW)

        bus.emit.assert_not_awaited()
        assert "past its end" in caplog.text


class TestAutoReturnTask:
    @pytest.mark.asyncio
    async def test_announces_overdue_once_per_day(self):
        overdue = _active(4, -timedelta(hours=1))
        current = _active(5, timedelta(days=1))
        bus = AsyncMock()
        lifecycle = _lifecycle(overdue, current)
        task = AutoReturnTask(lifecycle, bus)

        await task.run(NOW)
        await task.run(NOW + timedelta(minutes=30))
        await task.run(NOW + timedelta(days=1))

        assert [call.args[:2] for call in bus.emit.await_args_list] == [
            ("lease.overdue", 4),
            ("lease.overdue", 4),
        ]
        lifecycle.initiate_return.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auto_return_calls_lifecycle_and_survives_failures(self):
        first = _active(6, -timedelta(days=1))
        second = _active(7, -timedelta(days=1))
        lifecycle = _lifecycle(first, second)
        lifecycle.initiate_return.side_effect = [RemoteOperationFailed("panel down"), None]

        await AutoReturnTask(lifecycle, AsyncMock(), auto_return=True).run(NOW)

        assert [call.args for call in lifecycle.initiate_return.await_args_list] == [(6,), (7,)]

    @pytest.mark.asyncio
    async def test_unexpected_error_on_one_lease_does_not_stop_the_sweep(self, caplog):
        first = _active(8, -timedelta(days=1))
        second = _active(9, -timedelta(days=1))
        lifecycle = _lifecycle(first, second)
        lifecycle.initiate_return.side_effect = [OSError("disk full"), None]

        await AutoReturnTask(lifecycle, AsyncMock(), auto_return=True).run(NOW)

        assert [call.args for call in lifecycle.initiate_return.await_args_list] == [(8,), (9,)]
        assert "automatic return failed" in caplog.text

    @pytest.mark.asyncio
    async def test_naive_now_is_treated_as_utc(self):
        overdue = _active(10, -timedelta(hours=1))
        bus = AsyncMock()
        scheduler = Scheduler([AutoReturnTask(_lifecycle(overdue), bus)], interval_seconds=3600)

        results = await scheduler.run_due_tasks(NOW.replace(tzinfo=None))

        assert results == {"auto_return": True}
        assert bus.emit.await_args.args[:2] == ("lease.overdue", 10)
