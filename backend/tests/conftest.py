"""Shared fixtures: an in-memory panel double and file-backed stores."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from serverlease.archive import ArchiveOrchestrator, LocalDirectoryTransport
from serverlease.events import EventBus, EventStore
from serverlease.lifecycle import LeaseLifecycle
from serverlease.models import Snapshot, Subuser
from serverlease.pool import ResourcePool
from serverlease.remote import Provisioner, completed, issue
from serverlease.settings import PanelSettings
from serverlease.store import BindingStore, LeaseStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakePanel:
    """In-memory stand-in for PanelClient that records every call."""

    def __init__(self, *, quota: int = 3, now: datetime = NOW):
        self.quota = quota
        self.now = now
        self.snapshots: dict[str, list[Snapshot]] = {}
        self.files: dict[str, list[str]] = {}
        self.subusers: dict[str, list[Subuser]] = {}
        self.power_states: dict[str, str] = {}
        self.calls: list[tuple] = []
        self.fail_on: dict[str, Exception] = {}
        self._created = 0

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        error = self.fail_on.get(name)
        if error is not None:
            raise error

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def add_snapshot(
        self, resource_id: str, snapshot_id: str, *, held: bool, age_days: int, name: str = ""
    ) -> Snapshot:
        created = self.now - timedelta(days=age_days)
        snapshot = Snapshot(
            id=snapshot_id,
            name=name or snapshot_id,
            held=held,
            created_at=created,
            completed_at=created,
            successful=True,
        )
        self.snapshots.setdefault(resource_id, []).append(snapshot)
        return snapshot

    def add_subuser_account(
        self, resource_id: str, email: str, *, permissions: tuple[str, ...] = ()
    ) -> Subuser:
        subuser = Subuser(
            id=f"user-{len(self.subusers.get(resource_id, [])) + 1}-{email}",
            email=email,
            permissions=list(permissions),
        )
        self.subusers.setdefault(resource_id, []).append(subuser)
        return subuser

    def subuser_emails(self, resource_id: str) -> list[str]:
        return sorted(subuser.email for subuser in self.subusers.get(resource_id, []))

    async def list_snapshots(self, resource_id: str) -> list[Snapshot]:
        self._record("list_snapshots", resource_id)
        return list(self.snapshots.get(resource_id, []))

    async def snapshot_quota(self, resource_id: str) -> int:
        self._record("snapshot_quota", resource_id)
        return self.quota

    async def create_snapshot(self, resource_id: str, name: str):
        self._record("create_snapshot", resource_id, name)
        self._created += 1
        snapshot = Snapshot(
            id=f"new-{self._created}",
            name=name,
            created_at=self.now,
            completed_at=self.now,
            successful=True,
        )
        self.snapshots.setdefault(resource_id, []).append(snapshot)

        async def _initiate() -> Snapshot:
            return snapshot

        async def _complete(created: Snapshot) -> Snapshot:
            self._record("wait_snapshot", resource_id, created.id)
            return created

        return await issue(_initiate, _complete)

    async def download_snapshot(self, resource_id: str, snapshot_id: str) -> bytes:
        self._record("download_snapshot", resource_id, snapshot_id)
        return f"archive:{snapshot_id}".encode()

    async def delete_snapshot(self, resource_id: str, snapshot_id: str) -> None:
        self._record("delete_snapshot", resource_id, snapshot_id)
        self.snapshots[resource_id] = [
            snapshot for snapshot in self.snapshots.get(resource_id, []) if snapshot.id != snapshot_id
        ]

    async def toggle_hold(self, resource_id: str, snapshot_id: str) -> None:
        self._record("toggle_hold", resource_id, snapshot_id)
        self.snapshots[resource_id] = [
            snapshot.model_copy(update={"held": not snapshot.held})
            if snapshot.id == snapshot_id
            else snapshot
            for snapshot in self.snapshots.get(resource_id, [])
        ]

    async def power_state(self, resource_id: str) -> str:
        self._record("power_state", resource_id)
        return self.power_states.get(resource_id, "offline")

    async def power(self, resource_id: str, signal: str):
        self._record("power", resource_id, signal)
        return completed(None)

    async def delete_all_files(self, resource_id: str) -> None:
        self._record("delete_all_files", resource_id)
        self.files[resource_id] = []

    async def set_startup_variable(self, resource_id: str, key: str, value: str) -> None:
        self._record("set_startup_variable", resource_id, key, value)

    async def set_image(self, resource_id: str, image: str) -> None:
        self._record("set_image", resource_id, image)

    async def reinstall(self, resource_id: str):
        self._record("reinstall", resource_id)
        return completed(None)

    async def list_subusers(self, resource_id: str) -> list[Subuser]:
        self._record("list_subusers", resource_id)
        return list(self.subusers.get(resource_id, []))

    async def add_subuser(self, resource_id: str, email: str) -> Subuser:
        self._record("add_subuser", resource_id, email)
        return self.add_subuser_account(resource_id, email)

    async def remove_subuser(self, resource_id: str, subuser_id: str) -> None:
        self._record("remove_subuser", resource_id, subuser_id)
        self.subusers[resource_id] = [
            subuser for subuser in self.subusers.get(resource_id, []) if subuser.id != subuser_id
        ]


@pytest.fixture
def fake_panel() -> FakePanel:
    return FakePanel()


@pytest.fixture
def panel_settings() -> PanelSettings:
    return PanelSettings(
        base_url="https://panel.test",
        api_key="test-key",
        headers={"X-Proxy-Token": "proxy"},
        power_poll_interval_seconds=0.01,
        power_poll_timeout_seconds=0.5,
        reinstall_poll_timeout_seconds=0.5,
        snapshot_poll_interval_seconds=0.01,
        snapshot_poll_timeout_seconds=0.5,
    )


@pytest.fixture
def lease_store(tmp_path: Path) -> LeaseStore:
    return LeaseStore(tmp_path / "leases")


@pytest.fixture
def binding_store(tmp_path: Path) -> BindingStore:
    return BindingStore(tmp_path / "bindings.json")


@pytest.fixture
def event_bus(tmp_path: Path) -> EventBus:
    return EventBus(EventStore(tmp_path / "events"))


@pytest.fixture
def archive_dir(tmp_path: Path) -> Path:
    return tmp_path / "archive"


@pytest.fixture
def orchestrator(fake_panel: FakePanel, archive_dir: Path, tmp_path: Path) -> ArchiveOrchestrator:
    return ArchiveOrchestrator(
        fake_panel,  # type: ignore[arg-type]
        LocalDirectoryTransport(archive_dir),
        tmp_path / "scratch",
        clock=lambda: NOW,
    )


@pytest.fixture
def lifecycle(
    lease_store: LeaseStore,
    binding_store: BindingStore,
    event_bus: EventBus,
    fake_panel: FakePanel,
    orchestrator: ArchiveOrchestrator,
) -> LeaseLifecycle:
    return LeaseLifecycle(
        lease_store,
        ResourcePool(binding_store, lease_store),
        Provisioner(fake_panel),  # type: ignore[arg-type]
        orchestrator,
        event_bus,
        clock=lambda: NOW,
        archive_label="★",
    )


def lease_attrs(**overrides) -> dict:
    attrs = {
        "name": "Spring Event",
        "desired_duration_days": 7,
        "collaborators": ["u-1", "u-2"],
        "version_tag": "1.20.1",
        "event_date": "2026-11-02",
    }
    attrs.update(overrides)
    return attrs
