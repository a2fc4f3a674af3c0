"""Durable persistence for leases and resource bindings as JSON files."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from .errors import NotFound
from .models import Lease, LeaseAttrs, LeaseStatus, ResourceBinding, utc_now

logger = logging.getLogger(__name__)


def _atomic_write(path: Path, payload: Any) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
    tmp_path.replace(path)


class LeaseStore:
    """Persist Lease records as one JSON file per lease.

    All mutations go through a single lock so that ``claim`` can check pool
    exclusivity and write the activation in one step.
    """

    def __init__(self, base_dir: str | Path, *, ensure_dirs: bool = True):
        self.base_dir = Path(base_dir)
        self._lock = threading.Lock()
        if ensure_dirs:
            self.ensure_base_dir()

    def ensure_base_dir(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, lease_id: int) -> Path:
        return self.base_dir / f"{lease_id}.json"

    def _seq_path(self) -> Path:
        return self.base_dir / "_seq"

    def _next_id_locked(self) -> int:
        seq_path = self._seq_path()
        current = 0
        if seq_path.exists():
            try:
                current = int(seq_path.read_text(encoding="utf-8").strip() or 0)
            except ValueError:
                current = 0
        if current == 0:
            current = max((lease.id for lease in self._load_all()), default=0)
        next_id = current + 1
        seq_path.write_text(str(next_id), encoding="utf-8")
        return next_id

    def _save_locked(self, lease: Lease) -> Lease:
        _atomic_write(self._path(lease.id), lease.model_dump(mode="json"))
        return lease

    def _load_path(self, path: Path) -> Lease | None:
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
            return Lease.model_validate(payload)
        except (json.JSONDecodeError, ValidationError):
            logger.warning("skipping unreadable lease file %s", path.name)
            return None

    def _load_all(self) -> list[Lease]:
        if not self.base_dir.exists():
            return []
        leases: list[Lease] = []
        for path in self.base_dir.glob("*.json"):
            lease = self._load_path(path)
            if lease is not None:
                leases.append(lease)
        return leases

    def create(
        self,
        attrs: LeaseAttrs,
        *,
        requester_id: str,
        owner_id: str,
        created_at: datetime | None = None,
    ) -> Lease:
        """Persist a new pending lease and return it with its assigned id."""
        with self._lock:
            lease = Lease(
                id=self._next_id_locked(),
                name=attrs.name,
                requester_id=requester_id,
                owner_id=owner_id,
                status=LeaseStatus.PENDING,
                desired_duration_days=attrs.desired_duration_days,
                event_date=attrs.event_date,
                version_tag=attrs.version_tag,
                description=attrs.description,
                collaborators=list(attrs.collaborators),
                created_at=created_at or utc_now(),
            )
            return self._save_locked(lease)

    def get(self, lease_id: int) -> Lease | None:
        path = self._path(lease_id)
        if not path.exists():
            return None
        return self._load_path(path)

    def list(self, statuses: Iterable[LeaseStatus] | None = None) -> list[Lease]:
        """Return leases newest first, optionally filtered by status."""
        wanted = set(statuses) if statuses is not None else None
        leases = [
            lease
            for lease in self._load_all()
            if wanted is None or lease.status in wanted
        ]
        return sorted(leases, key=lambda lease: lease.id, reverse=True)

    def active_holders(self) -> dict[str, int]:
        """Map each resource id held by an active lease to that lease id."""
        return {
            lease.assigned_resource_id: lease.id
            for lease in self._load_all()
            if lease.status is LeaseStatus.ACTIVE and lease.assigned_resource_id
        }

    def update(self, lease_id: int, **changes: Any) -> Lease:
        """Apply several field changes in one validated write."""
        with self._lock:
            current = self.get(lease_id)
            if current is None:
                raise NotFound(f"lease {lease_id} not found")
            return self._save_locked(current.with_changes(**changes))

    def claim(
        self,
        lease_id: int,
        resource_id: str,
        *,
        start_at: datetime,
        end_at: datetime,
    ) -> Lease | None:
        """Activate a pending lease on ``resource_id`` if nobody else holds it.

        Returns None when the lease is no longer pending or the resource is
        already held by another active lease.
        """
        with self._lock:
            current = self.get(lease_id)
            if current is None:
                raise NotFound(f"lease {lease_id} not found")
            if current.status is not LeaseStatus.PENDING:
                return None
            holder = self.active_holders().get(resource_id)
            if holder is not None and holder != lease_id:
                return None
            activated = current.with_changes(
                status=LeaseStatus.ACTIVE,
                assigned_resource_id=resource_id,
                start_at=start_at,
                end_at=end_at,
            )
            return self._save_locked(activated)


class BindingStore:
    """Persist alias to physical-id bindings in a single JSON document."""

    def __init__(self, path: str | Path, *, ensure_dirs: bool = True):
        self.path = Path(path)
        self._lock = threading.Lock()
        if ensure_dirs:
            self.ensure_base_dir()

    def ensure_base_dir(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except json.JSONDecodeError:
            logger.warning("binding file %s is unreadable; treating as empty", self.path)
            return {}
        return {str(alias): str(physical_id) for alias, physical_id in payload.items()}

    def list(self) -> list[ResourceBinding]:
        """Return every binding in ascending alias order."""
        return [
            ResourceBinding(alias=alias, physical_id=physical_id)
            for alias, physical_id in sorted(self._load().items())
        ]

    def get(self, alias: str) -> ResourceBinding | None:
        physical_id = self._load().get(alias)
        if physical_id is None:
            return None
        return ResourceBinding(alias=alias, physical_id=physical_id)

    def find_by_physical_id(self, physical_id: str) -> ResourceBinding | None:
        for binding in self.list():
            if binding.physical_id == physical_id:
                return binding
        return None

    def set(self, alias: str, physical_id: str) -> ResourceBinding:
        """Create or replace the binding for ``alias``."""
        binding = ResourceBinding(alias=alias, physical_id=physical_id)
        with self._lock:
            bindings = self._load()
            bindings[binding.alias] = binding.physical_id
            _atomic_write(self.path, bindings)
        return binding

    def unset(self, alias: str) -> None:
        with self._lock:
            bindings = self._load()
            if alias not in bindings:
                raise NotFound(f"resource alias {alias!r} is not bound")
            del bindings[alias]
            _atomic_write(self.path, bindings)
