"""HTTP routes for the lease broker.

This module is safe to import: it does not construct runtime singletons or
perform filesystem/network side effects.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse

from .archive import ArchiveName
from .errors import (
    InvalidState,
    LeaseError,
    LeaseValidationError,
    NotFound,
    OperationTimeout,
    QuotaExhausted,
    RemoteOperationFailed,
    ResourceExhausted,
)
from .models import Lease, LeaseStatus
from .remote import image_for_version
from .schemas import (
    ApproveRequest,
    BackupRequest,
    BindingRequest,
    CreateLeaseRequest,
    ExtendRequest,
    PowerRequest,
    ResetRequest,
    ReturnRequest,
)

if TYPE_CHECKING:
    from .container import BackendContainer

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[LeaseError], int], ...] = (
    (LeaseValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidState, status.HTTP_409_CONFLICT),
    (ResourceExhausted, status.HTTP_409_CONFLICT),
    (QuotaExhausted, status.HTTP_409_CONFLICT),
    (RemoteOperationFailed, status.HTTP_502_BAD_GATEWAY),
    (OperationTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
)


def _status_for(exc: LeaseError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _lease_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, LeaseError)
    body: dict[str, object] = {"ok": False, "error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, LeaseValidationError) and exc.errors:
        body["errors"] = exc.errors
    code = _status_for(exc)
    if code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(body, status_code=code)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LeaseError, _lease_error_handler)


def _lease_json(lease: Lease) -> dict[str, object]:
    return lease.model_dump(mode="json")


def get_router(container: "BackendContainer") -> APIRouter:
    """Build API routes using the provided dependency container."""

    router = APIRouter()
    lifecycle = container.lifecycle

    @router.post("/leases", status_code=status.HTTP_201_CREATED)
    async def create_lease(payload: CreateLeaseRequest) -> dict[str, object]:
        """Submit a lease request; it starts out pending."""
        lease = await lifecycle.create(
            payload.requester_id,
            payload.owner_id or payload.requester_id,
            payload.attrs,
        )
        return _lease_json(lease)

    @router.get("/leases")
    async def list_leases(
        status_filter: list[LeaseStatus] | None = Query(default=None, alias="status"),
    ) -> list[dict[str, object]]:
        return [_lease_json(lease) for lease in lifecycle.list(status_filter)]

    @router.get("/leases/{lease_id}")
    async def get_lease(lease_id: int) -> dict[str, object]:
        return _lease_json(lifecycle.get(lease_id))

    @router.post("/leases/{lease_id}/approve")
    async def approve_lease(
        lease_id: int, payload: ApproveRequest | None = None
    ) -> dict[str, object]:
        """Assign a resource, reset it, and activate the lease."""
        payload = payload or ApproveRequest()
        lease = await lifecycle.approve(lease_id, skip_reset=payload.skip_reset)
        return _lease_json(lease)

    @router.post("/leases/{lease_id}/reject")
    async def reject_lease(lease_id: int) -> dict[str, object]:
        return _lease_json(await lifecycle.reject(lease_id))

    @router.post("/leases/{lease_id}/extend")
    async def extend_lease(lease_id: int, payload: ExtendRequest) -> dict[str, object]:
        return _lease_json(await lifecycle.extend(lease_id, payload.value))

    @router.post("/leases/{lease_id}/return")
    async def return_lease(
        lease_id: int, payload: ReturnRequest | None = None
    ) -> dict[str, object]:
        """Archive and wipe the assigned resource, then mark the lease returned."""
        payload = payload or ReturnRequest()
        lease = await lifecycle.initiate_return(
            lease_id,
            skip_archive=payload.skip_archive,
            skip_reset=payload.skip_reset,
            label=payload.label,
            owner_name=payload.owner_name,
        )
        return _lease_json(lease)

    @router.get("/leases/{lease_id}/events")
    async def lease_events(lease_id: int) -> list[dict[str, object]]:
        lifecycle.get(lease_id)
        return [event.model_dump() for event in container.event_store.replay(lease_id)]

    @router.get("/leases/{lease_id}/archives")
    async def lease_archives(lease_id: int) -> dict[str, object]:
        """List archive folders written for the lease, with share links."""
        folders = await lifecycle.list_archives(lease_id)
        archives = []
        for folder in folders:
            archives.append(
                {"folder": folder, "link": await container.transport.share_link(folder)}
            )
        return {"lease_id": lease_id, "archives": archives}

    @router.get("/resources")
    async def list_resources() -> list[dict[str, object]]:
        availability = container.pool.availability()
        return [
            {
                "alias": binding.alias,
                "physical_id": binding.physical_id,
                "lease_id": availability.get(binding.alias),
            }
            for binding in container.pool.list_bindings()
        ]

    @router.put("/resources/{alias}")
    async def bind_resource(alias: str, payload: BindingRequest) -> dict[str, object]:
        binding = container.binding_store.set(alias, payload.physical_id)
        logger.info("bound resource %s -> %s", binding.alias, binding.physical_id)
        return binding.model_dump()

    @router.delete("/resources/{alias}", status_code=status.HTTP_204_NO_CONTENT)
    async def unbind_resource(alias: str) -> None:
        container.binding_store.unset(alias)
        logger.info("unbound resource %s", alias)

    @router.get("/resources/{alias}/status")
    async def resource_status(alias: str) -> dict[str, object]:
        resource_id = container.pool.resolve(alias)
        return {
            "alias": alias,
            "resource_id": resource_id,
            "state": await container.panel_client.power_state(resource_id),
            "lease_id": container.pool.availability().get(alias),
        }

    @router.post("/resources/{alias}/power")
    async def resource_power(alias: str, payload: PowerRequest) -> dict[str, object]:
        """Send a power signal; with ``wait`` the call returns once it took effect."""
        resource_id = container.pool.resolve(alias)
        operation = await container.panel_client.power(resource_id, payload.signal)
        if payload.wait:
            await operation.wait()
        logger.info("sent %s to %s (%s)", payload.signal, alias, resource_id)
        return {
            "alias": alias,
            "resource_id": resource_id,
            "signal": payload.signal,
            "completed": payload.wait,
        }

    @router.post("/resources/{alias}/backup")
    async def resource_backup(
        alias: str, payload: BackupRequest | None = None
    ) -> dict[str, object]:
        """Archive the resource's snapshots outside of any lease."""
        payload = payload or BackupRequest()
        resource_id = container.pool.resolve(alias)
        name = ArchiveName.for_resource(resource_id, today=lifecycle.today(), tz=lifecycle.tz)
        report = await container.archiver.archive(resource_id, name, label=payload.label)
        return {"alias": alias, "resource_id": resource_id, **asdict(report)}

    @router.post("/resources/{alias}/reset")
    async def resource_reset(alias: str, payload: ResetRequest) -> dict[str, object]:
        """Reset the resource to a clean install of the given version."""
        resource_id = container.pool.resolve(alias)
        await container.provisioner.reset_to_baseline(resource_id, payload.version_tag)
        return {
            "alias": alias,
            "resource_id": resource_id,
            "image": image_for_version(payload.version_tag),
        }

    return router
