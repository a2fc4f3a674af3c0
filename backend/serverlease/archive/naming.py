"""Folder and file names for archived snapshots.

Folder: ``YYYY/YYYY-MM-DD_ID<lease>_[<lease name>]_<owner>-hosted[_v<version>]``
File:   ``[<label>]_YYYY-MM-DD_HH-MM.tar.gz``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo

from ..models import Lease

_FOLDER_PATTERN = re.compile(
    r"^(\d{4})/(\d{4}-\d{2}-\d{2})_ID(\d+)_\[(.+?)\]_(.+?)-hosted(?:_v(.+))?$"
)
_PATH_HOSTILE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")


def sanitize_path_part(value: str) -> str:
    """Replace whitespace with '-' and drop characters no filesystem accepts."""
    sanitized = _WHITESPACE.sub("-", value.strip())
    sanitized = _PATH_HOSTILE.sub("", sanitized)
    return "".join(char for char in sanitized if ord(char) >= 0x20)


@dataclass(frozen=True)
class ArchiveName:
    lease_id: int
    lease_name: str
    owner_name: str
    event_date: date
    version_tag: str | None = None
    tz: tzinfo = timezone.utc

    @classmethod
    def for_lease(
        cls,
        lease: Lease,
        *,
        owner_name: str | None = None,
        today: date | None = None,
        tz: tzinfo = timezone.utc,
    ) -> "ArchiveName":
        event_date = lease.event_date or today or datetime.now(tz).date()
        return cls(
            lease_id=lease.id,
            lease_name=lease.name,
            owner_name=owner_name or lease.owner_id,
            event_date=event_date,
            version_tag=lease.version_tag,
            tz=tz,
        )

    @classmethod
    def for_resource(
        cls, resource_id: str, *, today: date, tz: tzinfo = timezone.utc
    ) -> "ArchiveName":
        """Name for an ad-hoc backup taken outside any lease (lease id 0)."""
        return cls(
            lease_id=0,
            lease_name="Backup",
            owner_name=resource_id,
            event_date=today,
            tz=tz,
        )

    @property
    def folder_name(self) -> str:
        date_str = self.event_date.isoformat()
        version_part = f"_v{self.version_tag}" if self.version_tag else ""
        leaf = (
            f"{date_str}_ID{self.lease_id}_[{sanitize_path_part(self.lease_name)}]_"
            f"{sanitize_path_part(self.owner_name)}-hosted{version_part}"
        )
        return f"{self.event_date.year:04d}/{leaf}"

    def file_name(self, created_at: datetime, label: str | None = None) -> str:
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        stamp = created_at.astimezone(self.tz).strftime("%Y-%m-%d_%H-%M")
        label = sanitize_path_part(label) if label else ""
        prefix = f"[{label}]_" if label else ""
        return f"{prefix}{stamp}.tar.gz"

    @classmethod
    def from_folder_name(cls, folder_name: str) -> "ArchiveName | None":
        match = _FOLDER_PATTERN.match(folder_name)
        if not match:
            return None
        _, date_str, lease_id, lease_name, owner_name, version_tag = match.groups()
        try:
            event_date = date.fromisoformat(date_str)
        except ValueError:
            return None
        return cls(
            lease_id=int(lease_id),
            lease_name=lease_name,
            owner_name=owner_name,
            event_date=event_date,
            version_tag=version_tag or None,
        )

    @staticmethod
    def matches_lease(folder_name: str, lease_id: int) -> bool:
        parsed = ArchiveName.from_folder_name(folder_name)
        return parsed is not None and parsed.lease_id == lease_id
