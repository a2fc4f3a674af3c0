"""Lease lifecycle state machine.

pending -> active -> returned, pending -> rejected. Every operation checks the
persisted status before any side effect, and writes the new status only after
all remote work for the transition has succeeded, so a failed call can simply
be repeated.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any

from .archive.naming import ArchiveName
from .archive.orchestrator import ArchiveOrchestrator
from .errors import InvalidState, LeaseValidationError, NotFound, ResourceExhausted
from .events import EventBus
from .models import Lease, LeaseAttrs, LeaseStatus, utc_now
from .pool import ResourcePool
from .remote.provisioning import Provisioner
from .store import LeaseStore

logger = logging.getLogger(__name__)


class LeaseLifecycle:
    """Create, approve, reject, extend and return leases."""

    def __init__(
        self,
        store: LeaseStore,
        pool: ResourcePool,
        provisioner: Provisioner,
        archiver: ArchiveOrchestrator,
        bus: EventBus,
        *,
        clock: Callable[[], datetime] = utc_now,
        archive_label: str | None = None,
        tz: tzinfo = timezone.utc,
    ):
        self.store = store
        self.pool = pool
        self.provisioner = provisioner
        self.archiver = archiver
        self.bus = bus
        self.archive_label = archive_label
        self.tz = tz
        self._clock = clock
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}
        self._reserved: set[str] = set()

    @asynccontextmanager
    async def _serialized(self, lease_id: int) -> AsyncIterator[None]:
        """Hold the lease's lock; the lock is dropped once nobody uses it."""
        lock = self._locks.get(lease_id)
        if lock is None:
            lock = self._locks[lease_id] = asyncio.Lock()
        self._lock_users[lease_id] = self._lock_users.get(lease_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[lease_id] -= 1
            if self._lock_users[lease_id] == 0:
                del self._lock_users[lease_id]
                del self._locks[lease_id]

    def _require(self, lease_id: int, target: LeaseStatus, operation: str) -> Lease:
        lease = self.get(lease_id)
        if not lease.can_transition_to(target):
            raise InvalidState(lease.id, lease.status.value, operation)
        return lease

    def today(self) -> date:
        """Current calendar date in the configured zone."""
        return self._clock().astimezone(self.tz).date()

    def get(self, lease_id: int) -> Lease:
        lease = self.store.get(lease_id)
        if lease is None:
            raise NotFound(f"lease {lease_id} not found")
        return lease

    def list(self, statuses: Iterable[LeaseStatus] | None = None) -> list[Lease]:
        return self.store.list(statuses)

    async def create(
        self,
        requester_id: str,
        owner_id: str,
        attrs: LeaseAttrs | Mapping[str, Any],
    ) -> Lease:
        """Validate the request attributes and persist a pending lease."""
        if not requester_id or not owner_id:
            raise LeaseValidationError("requester and owner are required")
        parsed = LeaseAttrs.parse(attrs, today=self.today())
        lease = self.store.create(
            parsed,
            requester_id=requester_id,
            owner_id=owner_id,
            created_at=self._clock(),
        )
        logger.info(
            "lease created name=%s owner=%s days=%s",
            lease.name,
            lease.owner_id,
            lease.desired_duration_days,
            extra={"lease_id": lease.id},
        )
        await self.bus.emit(
            "lease.created",
            lease.id,
            {
                "name": lease.name,
                "requester_id": lease.requester_id,
                "owner_id": lease.owner_id,
                "desired_duration_days": lease.desired_duration_days,
            },
        )
        return lease

    async def approve(self, lease_id: int, *, skip_reset: bool = False) -> Lease:
        """Assign a free resource, reset it unless skipped, then activate.

        The lease stays pending if anything fails before the activation write.
        """
        async with self._serialized(lease_id):
            lease = self._require(lease_id, LeaseStatus.ACTIVE, "approve")
            binding = self.pool.find_available(exclude=self._reserved)
            if binding is None:
                logger.warning("no free resource for approval", extra={"lease_id": lease_id})
                raise ResourceExhausted("no resource is currently available")

            resource_id = binding.physical_id
            self._reserved.add(resource_id)
            try:
                if not skip_reset:
                    await self.provisioner.reset_to_baseline(resource_id, lease.version_tag)
                await self.provisioner.grant_access(resource_id, lease.collaborators)
                start_at = self._clock()
                end_at = start_at + timedelta(days=lease.desired_duration_days)
                activated = self.store.claim(
                    lease_id, resource_id, start_at=start_at, end_at=end_at
                )
            finally:
                self._reserved.discard(resource_id)

            if activated is None:
                logger.warning(
                    "resource %s was claimed concurrently", binding.alias, extra={"lease_id": lease_id}
                )
                raise ResourceExhausted(f"resource {binding.alias} was claimed by another lease")

        logger.info(
            "lease approved on %s until %s",
            binding.alias,
            end_at.isoformat(),
            extra={"lease_id": lease_id},
        )
        await self.bus.emit(
            "lease.approved",
            lease_id,
            {
                "resource_id": resource_id,
                "alias": binding.alias,
                "start_at": start_at.isoformat(),
                "end_at": end_at.isoformat(),
                "reset": not skip_reset,
            },
        )
        return activated

    async def reject(self, lease_id: int) -> Lease:
        async with self._serialized(lease_id):
            self._require(lease_id, LeaseStatus.REJECTED, "reject")
            rejected = self.store.update(lease_id, status=LeaseStatus.REJECTED)
        logger.info("lease rejected", extra={"lease_id": lease_id})
        await self.bus.emit("lease.rejected", lease_id, {})
        return rejected

    async def extend(self, lease_id: int, new_value: int | datetime) -> Lease:
        """Pending leases take a new duration in days; active ones a new end time."""
        async with self._serialized(lease_id):
            lease = self.get(lease_id)
            if lease.status is LeaseStatus.PENDING:
                if isinstance(new_value, bool) or not isinstance(new_value, int) or new_value <= 0:
                    raise LeaseValidationError("duration must be a positive number of days")
                updated = self.store.update(lease_id, desired_duration_days=new_value)
                data: dict[str, Any] = {"desired_duration_days": new_value}
            elif lease.status is LeaseStatus.ACTIVE:
                if not isinstance(new_value, datetime) or new_value.tzinfo is None:
                    raise LeaseValidationError("end time must be a timezone-aware datetime")
                if lease.start_at is not None and new_value <= lease.start_at:
                    raise LeaseValidationError("end time must be after the lease start")
                updated = self.store.update(lease_id, end_at=new_value)
                data = {"end_at": new_value.isoformat()}
            else:
                raise InvalidState(lease.id, lease.status.value, "extend")

        logger.info("lease extended %s", data, extra={"lease_id": lease_id})
        await self.bus.emit("lease.extended", lease_id, data)
        return updated

    async def initiate_return(
        self,
        lease_id: int,
        *,
        skip_archive: bool = False,
        skip_reset: bool = False,
        label: str | None = None,
        owner_name: str | None = None,
    ) -> Lease:
        """Archive the resource, wipe its files, then mark the lease returned."""
        async with self._serialized(lease_id):
            lease = self._require(lease_id, LeaseStatus.RETURNED, "return")
            resource_id = lease.assigned_resource_id
            assert resource_id is not None

            report = None
            if not skip_archive:
                name = ArchiveName.for_lease(
                    lease,
                    owner_name=owner_name,
                    today=self.today(),
                    tz=self.tz,
                )
                report = await self.archiver.archive(
                    resource_id, name, label=label if label is not None else self.archive_label
                )
            if not skip_reset:
                await self.provisioner.wipe(resource_id)
            await self.provisioner.revoke_access(resource_id, lease.collaborators)

            returned = self.store.update(
                lease_id, status=LeaseStatus.RETURNED, assigned_resource_id=None
            )

        logger.info(
            "lease returned from %s archived=%s wiped=%s",
            resource_id,
            report is not None,
            not skip_reset,
            extra={"lease_id": lease_id},
        )
        data: dict[str, Any] = {"resource_id": resource_id, "wiped": not skip_reset}
        if report is not None:
            data["archive_folder"] = report.folder
            data["archived_files"] = list(report.uploaded)
        await self.bus.emit("lease.returned", lease_id, data)
        return returned

    async def list_archives(self, lease_id: int) -> list[str]:
        self.get(lease_id)
        return await self.archiver.list_archives(lease_id)
