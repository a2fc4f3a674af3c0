"""Event history persistence and subscriber fan-out."""

import pytest

from serverlease.events import EventBus, EventStore, LoggingNotifier


@pytest.mark.asyncio
async def test_publish_persists_before_fan_out(tmp_path):
    store = EventStore(tmp_path / "events")
    bus = EventBus(store)
    seen = []

    async def subscriber(event):
        seen.append((event.seq, len(store.replay(event.lease_id))))

    unsubscribe = bus.subscribe(subscriber)
    await bus.emit("lease.created", 3, {"name": "x"})
    await bus.emit("lease.approved", 3)
    unsubscribe()
    await bus.emit("lease.returned", 3)

    assert seen == [(1, 1), (2, 2)]
    assert [event.type for event in EventStore(tmp_path / "events").replay(3)] == [
        "lease.created",
        "lease.approved",
        "lease.returned",
    ]


@pytest.mark.asyncio
async def test_failing_subscriber_is_isolated(tmp_path, caplog):
    bus = EventBus(EventStore(tmp_path / "events"))
    calls = []

    async def broken(event):
        raise RuntimeError("delivery down")

    async def healthy(event):
        calls.append(event.type)

    bus.subscribe(broken)
    bus.subscribe(healthy)
    event = await bus.emit("lease.rejected", 5)

    assert event.seq == 1
    assert calls == ["lease.rejected"]
    assert "event subscriber failed" in caplog.text


@pytest.mark.asyncio
async def test_logging_notifier(tmp_path, caplog):
    caplog.set_level("INFO", logger="serverlease.events")
    bus = EventBus(EventStore(tmp_path / "events"))
    notifier = LoggingNotifier(bus)

    await bus.emit("lease.reminder", 8, {"days_left": 3})
    notifier.close()
    await bus.emit("lease.reminder", 8, {"days_left": 1})

    messages = [record.getMessage() for record in caplog.records if record.name == "serverlease.events"]
    assert messages == ['lease event type=lease.reminder data={"days_left": 3}']
