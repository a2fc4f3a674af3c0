"""Archive a resource's snapshots to durable storage.

One ``archive()`` call:

1. reads the snapshot list and the snapshot quota together,
2. evicts the oldest unheld snapshots needed to make room for one more,
   refusing with ``QuotaExhausted`` before touching anything if it cannot,
3. creates a transient snapshot and waits for it to complete,
4. copies every held snapshot plus the transient one to the transport,
5. releases the holds that were present in step 1,
6. always deletes the transient snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from ..errors import QuotaExhausted
from ..models import Snapshot, utc_now
from ..remote.client import PanelClient
from .naming import ArchiveName
from .transport import ArchiveTransport

logger = logging.getLogger(__name__)

TRANSIENT_PREFIX = "[auto]"


@dataclass
class ArchiveReport:
    folder: str
    uploaded: list[str] = field(default_factory=list)
    evicted: list[str] = field(default_factory=list)
    released: list[str] = field(default_factory=list)


def eviction_candidates(
    resource_id: str, snapshots: list[Snapshot], quota: int
) -> list[Snapshot]:
    """Oldest unheld snapshots to delete so one more fits under ``quota``."""
    delete_count = max(0, len(snapshots) - quota + 1)
    if delete_count == 0:
        return []
    deletable = sorted(
        (snapshot for snapshot in snapshots if not snapshot.held),
        key=lambda snapshot: snapshot.created_at,
    )
    if len(deletable) < delete_count:
        raise QuotaExhausted(resource_id, delete_count, len(deletable))
    return deletable[:delete_count]


class ArchiveOrchestrator:
    def __init__(
        self,
        client: PanelClient,
        transport: ArchiveTransport,
        scratch_dir: Path,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.transport = transport
        self.scratch_dir = Path(scratch_dir)
        self._clock = clock

    async def archive(
        self, resource_id: str, name: ArchiveName, *, label: str | None = None
    ) -> ArchiveReport:
        report = ArchiveReport(folder=name.folder_name)

        snapshots, quota = await asyncio.gather(
            self.client.list_snapshots(resource_id),
            self.client.snapshot_quota(resource_id),
        )
        held = [snapshot for snapshot in snapshots if snapshot.held]
        try:
            evict = eviction_candidates(resource_id, snapshots, quota)
        except QuotaExhausted as exc:
            logger.error(
                "snapshot quota exhausted on %s: need %s deletions, %s unheld",
                resource_id,
                exc.needed,
                exc.deletable,
                extra={"lease_id": name.lease_id},
            )
            raise

        for snapshot in evict:
            await self.client.delete_snapshot(resource_id, snapshot.id)
            report.evicted.append(snapshot.id)
            logger.info(
                "evicted snapshot %s (%s) from %s",
                snapshot.id,
                snapshot.name,
                resource_id,
                extra={"lease_id": name.lease_id},
            )

        stamp = self._clock().astimezone(name.tz).strftime("%Y-%m-%d %H:%M:%S")
        pending = await self.client.create_snapshot(resource_id, f"{TRANSIENT_PREFIX} {stamp}")
        transient_id = pending.response.id
        try:
            transient = await pending.wait()
            targets = [(snapshot, snapshot.name) for snapshot in held]
            targets.append((transient, label))
            for snapshot, snapshot_label in targets:
                uploaded = await self._transfer(resource_id, snapshot, name, snapshot_label)
                report.uploaded.append(uploaded)

            for snapshot in held:
                try:
                    await self.client.toggle_hold(resource_id, snapshot.id)
                except Exception:
                    logger.exception(
                        "failed to release hold on snapshot %s of %s",
                        snapshot.id,
                        resource_id,
                        extra={"lease_id": name.lease_id},
                    )
                else:
                    report.released.append(snapshot.id)
        finally:
            try:
                await self.client.delete_snapshot(resource_id, transient_id)
            except Exception:
                logger.exception(
                    "failed to delete transient snapshot %s of %s",
                    transient_id,
                    resource_id,
                    extra={"lease_id": name.lease_id},
                )

        logger.info(
            "archived %s snapshot(s) of %s to %s",
            len(report.uploaded),
            resource_id,
            report.folder,
            extra={"lease_id": name.lease_id},
        )
        return report

    async def _transfer(
        self,
        resource_id: str,
        snapshot: Snapshot,
        name: ArchiveName,
        label: str | None,
    ) -> str:
        file_name = name.file_name(snapshot.created_at, label)
        scratch = self.scratch_dir / f"{snapshot.id}.tar.gz"
        try:
            content = await self.client.download_snapshot(resource_id, snapshot.id)
            await asyncio.to_thread(self._write_scratch, scratch, content)
            await self.transport.upload(scratch, name.folder_name, remote_name=file_name)
        finally:
            try:
                scratch.unlink(missing_ok=True)
            except OSError:
                logger.exception("failed to remove scratch file %s", scratch)
        return file_name

    @staticmethod
    def _write_scratch(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def list_archives(self, lease_id: int) -> list[str]:
        """Archive folders previously written for ``lease_id``."""
        folders = await self.transport.list_folders()
        return [folder for folder in folders if ArchiveName.matches_lease(folder, lease_id)]
