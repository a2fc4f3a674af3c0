"""Request bodies for the HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import VERSION_TAG_PATTERN


class CreateLeaseRequest(BaseModel):
    """Body for POST /leases; ``attrs`` is validated by the lifecycle."""

    requester_id: str = Field(..., min_length=1)
    owner_id: str | None = None
    attrs: dict[str, Any]


class ApproveRequest(BaseModel):
    skip_reset: bool = False


class ExtendRequest(BaseModel):
    """Exactly one of ``days`` (pending leases) or ``end_at`` (active leases)."""

    days: int | None = None
    end_at: datetime | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "ExtendRequest":
        if (self.days is None) == (self.end_at is None):
            raise ValueError("provide exactly one of days or end_at")
        return self

    @property
    def value(self) -> int | datetime:
        return self.days if self.days is not None else self.end_at  # type: ignore[return-value]


class ReturnRequest(BaseModel):
    skip_archive: bool = False
    skip_reset: bool = False
    label: str | None = None
    owner_name: str | None = None


class BindingRequest(BaseModel):
    physical_id: str = Field(..., min_length=1)


class PowerRequest(BaseModel):
    signal: Literal["start", "stop", "restart", "kill"]
    wait: bool = False


class BackupRequest(BaseModel):
    label: str | None = None


class ResetRequest(BaseModel):
    version_tag: str | None = None

    @field_validator("version_tag")
    @classmethod
    def _check_version_tag(cls, value: str | None) -> str | None:
        if value and not VERSION_TAG_PATTERN.match(value):
            raise ValueError("version tag must look like MAJOR.MINOR or MAJOR.MINOR.PATCH")
        return value or None
