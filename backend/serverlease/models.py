"""Lease, binding and snapshot models shared across the broker."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal, Mapping

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from .dates import parse_event_date
from .errors import LeaseValidationError

VERSION_TAG_PATTERN = re.compile(r"^\d+\.\d+(?:\.\d+)?$")


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class LeaseStatus(str, Enum):
    """Lease lifecycle states persisted with every transition."""

    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    RETURNED = "returned"


LEGAL_TRANSITIONS: dict[LeaseStatus, frozenset[LeaseStatus]] = {
    LeaseStatus.PENDING: frozenset({LeaseStatus.ACTIVE, LeaseStatus.REJECTED}),
    LeaseStatus.ACTIVE: frozenset({LeaseStatus.RETURNED}),
    LeaseStatus.REJECTED: frozenset(),
    LeaseStatus.RETURNED: frozenset(),
}

TERMINAL_STATUSES = frozenset({LeaseStatus.REJECTED, LeaseStatus.RETURNED})


def _clean_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]


class LeaseAttrs(BaseModel):
    """Validated request attributes accepted at the broker boundary."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    kind: Literal["lease.request"] = "lease.request"
    name: str = Field(..., min_length=1, max_length=100)
    desired_duration_days: int = Field(..., gt=0, strict=True)
    collaborators: list[str] = Field(..., min_length=1)
    version_tag: str | None = None
    description: str | None = Field(default=None, max_length=4000)
    event_date: date | None = None

    @field_validator("collaborators")
    @classmethod
    def _dedupe_collaborators(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for principal in value:
            principal = principal.strip()
            if principal and principal not in seen:
                seen.append(principal)
        if not seen:
            raise ValueError("at least one collaborator is required")
        return seen

    @field_validator("version_tag")
    @classmethod
    def _check_version_tag(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        if not VERSION_TAG_PATTERN.match(value):
            raise ValueError("version tag must look like MAJOR.MINOR or MAJOR.MINOR.PATCH")
        return value

    @field_validator("event_date", mode="before")
    @classmethod
    def _parse_event_date(cls, value: Any, info: ValidationInfo) -> Any:
        if not isinstance(value, str):
            return value
        if not value.strip():
            return None
        today = (info.context or {}).get("today")
        parsed = parse_event_date(value, today)
        if parsed is None:
            raise ValueError("event date must look like MM/DD or YYYY/MM/DD")
        return parsed

    @field_validator("description")
    @classmethod
    def _blank_description(cls, value: str | None) -> str | None:
        return value or None

    @classmethod
    def parse(
        cls, raw: "LeaseAttrs | Mapping[str, Any]", *, today: date | None = None
    ) -> "LeaseAttrs":
        """Validate a raw payload, raising LeaseValidationError on failure.

        ``today`` anchors year-less event dates; pass it in the configured zone.
        """
        if isinstance(raw, cls):
            return raw
        try:
            return cls.model_validate(dict(raw), context={"today": today})
        except ValidationError as exc:
            errors = _clean_errors(exc)
            fields = ", ".join(".".join(error["loc"]) for error in errors) or "request"
            raise LeaseValidationError(f"invalid lease request: {fields}", errors) from exc


class Lease(BaseModel):
    """Durable lease record; rejected and returned leases are kept forever."""

    model_config = ConfigDict(extra="forbid")

    id: int
    name: str
    requester_id: str
    owner_id: str
    status: LeaseStatus = LeaseStatus.PENDING
    desired_duration_days: int = Field(..., gt=0)
    assigned_resource_id: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    event_date: date | None = None
    version_tag: str | None = None
    description: str | None = None
    collaborators: list[str] = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Lease":
        is_active = self.status is LeaseStatus.ACTIVE
        if (self.assigned_resource_id is not None) != is_active:
            raise ValueError("assigned_resource_id must be set exactly when the lease is active")
        has_end = self.status in {LeaseStatus.ACTIVE, LeaseStatus.RETURNED}
        if (self.end_at is not None) != has_end:
            raise ValueError("end_at must be set exactly when the lease is active or returned")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, target: LeaseStatus) -> bool:
        return target in LEGAL_TRANSITIONS[self.status]

    def with_changes(self, **changes: Any) -> "Lease":
        """Return a re-validated copy with the given fields replaced."""
        payload = self.model_dump()
        payload.update(changes)
        return Lease.model_validate(payload)


class ResourceBinding(BaseModel):
    """Alias to physical resource id mapping managed by administrators."""

    model_config = ConfigDict(extra="forbid")

    alias: str = Field(..., min_length=1)
    physical_id: str = Field(..., min_length=1)


class Snapshot(BaseModel):
    """Point-in-time backup held by the panel for a resource."""

    id: str
    name: str = ""
    held: bool = False
    created_at: datetime
    size: int = 0
    completed_at: datetime | None = None
    successful: bool = False

    @property
    def completed(self) -> bool:
        return self.completed_at is not None

    @classmethod
    def from_panel(cls, attributes: Mapping[str, Any]) -> "Snapshot":
        """Build a Snapshot from the panel's backup attributes payload."""
        return cls(
            id=attributes["uuid"],
            name=attributes.get("name") or "",
            held=bool(attributes.get("is_locked", False)),
            created_at=attributes["created_at"],
            size=int(attributes.get("bytes") or attributes.get("size") or 0),
            completed_at=attributes.get("completed_at"),
            successful=bool(attributes.get("is_successful", False)),
        )


class Subuser(BaseModel):
    """Panel account granted access to one server."""

    id: str
    email: str
    permissions: list[str] = Field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        """Accounts that may manage other users are never removed by a sync."""
        return any(permission.startswith("user.") for permission in self.permissions)

    @classmethod
    def from_panel(cls, attributes: Mapping[str, Any]) -> "Subuser":
        return cls(
            id=attributes["uuid"],
            email=attributes["email"],
            permissions=list(attributes.get("permissions") or []),
        )
