"""Lease broker exception types shared across modules."""

from __future__ import annotations

from typing import Any, Sequence


class LeaseError(Exception):
    """Base class for lease broker failures."""


class LeaseValidationError(LeaseError):
    """Raised when request attributes or transition arguments are malformed."""

    def __init__(self, message: str, errors: Sequence[dict[str, Any]] | None = None):
        self.errors = list(errors or [])
        super().__init__(message)


class NotFound(LeaseError):
    """Raised when a lease or resource alias does not exist."""


class InvalidState(LeaseError):
    """Raised when a transition is attempted from the wrong lease status."""

    def __init__(self, lease_id: int, current: str, operation: str):
        self.lease_id = lease_id
        self.current = current
        self.operation = operation
        super().__init__(f"cannot {operation} lease {lease_id} in status {current}")


class ResourceExhausted(LeaseError):
    """Raised when no resource is free at approval time."""


class QuotaExhausted(LeaseError):
    """Raised when archival cannot free enough snapshot slots."""

    def __init__(self, resource_id: str, needed: int, deletable: int):
        self.resource_id = resource_id
        self.needed = needed
        self.deletable = deletable
        super().__init__(
            f"snapshot quota reached on {resource_id}: need to evict {needed}, "
            f"only {deletable} unheld snapshot(s) can be deleted"
        )


class RemoteOperationFailed(LeaseError):
    """Raised when a call to the panel or the archive transport fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class OperationTimeout(LeaseError):
    """Raised when a tracked remote operation misses its deadline."""

    def __init__(self, description: str, timeout: float):
        self.description = description
        self.timeout = timeout
        super().__init__(f"{description} timed out after {timeout:g}s")
