"""Explicit dependency container for the lease broker.

This module is side-effect free on import. It provides functions to build and
lifecycle-manage the dependency graph.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

if TYPE_CHECKING:
    import httpx

    from .archive import ArchiveOrchestrator, ArchiveTransport
    from .events import EventBus, EventStore, LoggingNotifier
    from .lifecycle import LeaseLifecycle
    from .pool import ResourcePool
    from .remote import PanelClient, Provisioner
    from .schedules import Scheduler
    from .settings import Settings
    from .store import BindingStore, LeaseStore

logger = logging.getLogger(__name__)


@dataclass
class BackendContainer:
    """Holds the constructed runtime dependencies."""

    settings: Settings

    data_dir: Path
    leases_dir: Path
    events_dir: Path
    bindings_file: Path

    lease_store: LeaseStore
    binding_store: BindingStore
    event_store: EventStore
    event_bus: EventBus
    notifier: LoggingNotifier

    panel_client: PanelClient
    provisioner: Provisioner
    transport: ArchiveTransport
    archiver: ArchiveOrchestrator
    pool: ResourcePool
    lifecycle: LeaseLifecycle
    scheduler: Scheduler


def _resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("unknown TIMEZONE %r; falling back to UTC", name)
        return timezone.utc


def build_container(
    *,
    settings: "Settings" | None = None,
    data_dir: Path | None = None,
    http_client: "httpx.AsyncClient" | None = None,
    clock: Callable[[], datetime] | None = None,
) -> BackendContainer:
    """Construct the dependency graph without starting background work."""

    # Local imports keep this module side-effect-free on import.
    from .archive import ArchiveOrchestrator, LocalDirectoryTransport, RcloneTransport
    from .events import EventBus, EventStore, LoggingNotifier
    from .lifecycle import LeaseLifecycle
    from .models import utc_now
    from .pool import ResourcePool
    from .remote import PanelClient, Provisioner
    from .schedules import AutoReturnTask, ReminderTask, Scheduler
    from .settings import get_settings
    from .store import BindingStore, LeaseStore

    settings = settings or get_settings()
    clock = clock or utc_now
    tz = _resolve_timezone(settings.runtime.timezone)

    resolved_data_dir = data_dir or settings.runtime.data_dir
    leases_dir = resolved_data_dir / "leases"
    events_dir = resolved_data_dir / "events"
    bindings_file = resolved_data_dir / "bindings.json"

    lease_store = LeaseStore(leases_dir, ensure_dirs=False)
    binding_store = BindingStore(bindings_file, ensure_dirs=False)
    event_store = EventStore(events_dir, ensure_dirs=False)

    if settings.runtime.mode == "distributed":
        if not settings.runtime.redis_url:
            msg = "BACKEND_MODE=distributed requires REDIS_URL"
            raise ValueError(msg)
        from .distributed.redis_stores import (
            RedisBindingStore,
            RedisEventStore,
            RedisLeaseStore,
            RedisStoreConfig,
        )

        store_config = RedisStoreConfig(url=settings.runtime.redis_url)
        lease_store = RedisLeaseStore(store_config)
        binding_store = RedisBindingStore(store_config)
        event_store = RedisEventStore(store_config)

    event_bus = EventBus(event_store)
    notifier = LoggingNotifier(event_bus)

    panel_client = PanelClient(settings.panel, http_client=http_client)
    provisioner = Provisioner(panel_client, email_domain=settings.panel.user_email_domain)

    if settings.archive.backend == "local":
        transport = LocalDirectoryTransport(
            settings.archive.base_path or resolved_data_dir / "archive"
        )
    else:
        transport = RcloneTransport(settings.archive.rclone_path, settings.archive.base_path)
    archiver = ArchiveOrchestrator(
        panel_client, transport, settings.archive.scratch_dir, clock=clock
    )

    pool = ResourcePool(binding_store, lease_store)
    lifecycle = LeaseLifecycle(
        lease_store,
        pool,
        provisioner,
        archiver,
        event_bus,
        clock=clock,
        archive_label=settings.archive.return_label,
        tz=tz,
    )

    scheduler = Scheduler(
        [
            AutoReturnTask(
                lifecycle, event_bus, auto_return=settings.scheduler.auto_return, tz=tz
            ),
            ReminderTask(lifecycle, event_bus, days=settings.scheduler.reminder_days, tz=tz),
        ],
        interval_seconds=settings.scheduler.interval_seconds,
        clock=clock,
    )

    return BackendContainer(
        settings=settings,
        data_dir=resolved_data_dir,
        leases_dir=leases_dir,
        events_dir=events_dir,
        bindings_file=bindings_file,
        lease_store=lease_store,
        binding_store=binding_store,
        event_store=event_store,
        event_bus=event_bus,
        notifier=notifier,
        panel_client=panel_client,
        provisioner=provisioner,
        transport=transport,
        archiver=archiver,
        pool=pool,
        lifecycle=lifecycle,
        scheduler=scheduler,
    )


def startup(container: BackendContainer, *, start_scheduler: bool = False) -> None:
    """Perform IO-heavy or side-effectful initialization for the container."""

    container.lease_store.ensure_base_dir()
    container.binding_store.ensure_base_dir()
    container.event_store.ensure_base_dir()
    if container.settings.runtime.mode == "single_process":
        container.data_dir.mkdir(parents=True, exist_ok=True)
    container.archiver.scratch_dir.mkdir(parents=True, exist_ok=True)
    if start_scheduler:
        container.scheduler.start()


async def shutdown(container: BackendContainer) -> None:
    """Stop background tasks and release clients owned by the container."""

    await container.scheduler.stop()
    container.notifier.close()
    await container.panel_client.aclose()
