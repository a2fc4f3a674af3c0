"""HTTP client for the game panel's client API.

Every long-running panel action (power, reinstall, backup creation) returns a
PendingOperation; the panel has no push channel, so completion is observed by
polling the matching status endpoint.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

import httpx

from ..errors import RemoteOperationFailed
from ..models import Snapshot, Subuser
from ..settings import PanelSettings
from .tracker import PendingOperation, completed, issue, poll_until

logger = logging.getLogger(__name__)

PowerSignal = Literal["start", "stop", "restart", "kill"]

_EXPECTED_POWER_STATE: dict[str, str] = {
    "start": "running",
    "stop": "offline",
    "kill": "offline",
}

# Everything except user, allocation and database management.
SUBUSER_PERMISSIONS: tuple[str, ...] = (
    "control.console",
    "control.start",
    "control.stop",
    "control.restart",
    "file.create",
    "file.read",
    "file.read-content",
    "file.update",
    "file.delete",
    "file.archive",
    "file.sftp",
    "backup.create",
    "backup.read",
    "backup.delete",
    "backup.download",
    "backup.restore",
    "startup.read",
    "startup.update",
    "startup.docker-image",
    "schedule.create",
    "schedule.read",
    "schedule.update",
    "schedule.delete",
    "settings.rename",
    "settings.reinstall",
    "activity.read",
    "websocket.connect",
)


def _error_message(response: httpx.Response) -> tuple[str, str | None]:
    message = f"{response.status_code} {response.reason_phrase}"
    try:
        body = response.json()
    except ValueError:
        return message, None
    errors = body.get("errors") if isinstance(body, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        code = errors[0].get("code")
        detail = errors[0].get("detail")
        return f"{code}: {detail}", code
    return message, None


class PanelClient:
    """Power, file and backup operations against panel-managed servers."""

    def __init__(
        self,
        settings: PanelSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            follow_redirects=True,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            **self.settings.headers,
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Any | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.settings.base_url}/api/client{endpoint}"
        try:
            response = await self._http.request(
                method, url, json=json, params=params, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            logger.error("panel request failed %s %s: %s", method, endpoint, exc)
            raise RemoteOperationFailed(f"panel request {method} {endpoint} failed: {exc}") from exc

        if response.is_error:
            message, code = _error_message(response)
            logger.error("panel API error [%s %s]: %s", method, endpoint, message)
            raise RemoteOperationFailed(
                f"panel API error: {message}",
                status_code=response.status_code,
                code=code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Power
    # ------------------------------------------------------------------

    async def power_state(self, resource_id: str) -> str:
        data = await self._request("GET", f"/servers/{resource_id}/resources")
        return data["attributes"]["current_state"]

    async def power(self, resource_id: str, signal: PowerSignal) -> PendingOperation[None, None]:
        """Send a power signal; wait() resolves once the server reaches the target state."""

        async def _send() -> None:
            await self._request(
                "POST", f"/servers/{resource_id}/power", json={"signal": signal}
            )

        expected = _EXPECTED_POWER_STATE.get(signal)
        if expected is None:
            # restart passes through running again too fast to observe
            await _send()
            return completed(None)

        async def _complete(_: None) -> None:
            await poll_until(
                lambda: self.power_state(resource_id),
                lambda state: state == expected,
                interval=self.settings.power_poll_interval_seconds,
                timeout=self.settings.power_poll_timeout_seconds,
                description=f"power {signal} on {resource_id}",
            )

        return await issue(_send, _complete)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    async def snapshot_quota(self, resource_id: str) -> int:
        data = await self._request("GET", f"/servers/{resource_id}")
        return int(data["attributes"]["feature_limits"]["backups"])

    async def list_snapshots(self, resource_id: str) -> list[Snapshot]:
        data = await self._request("GET", f"/servers/{resource_id}/backups")
        return [Snapshot.from_panel(item["attributes"]) for item in data.get("data", [])]

    async def get_snapshot(self, resource_id: str, snapshot_id: str) -> Snapshot:
        data = await self._request("GET", f"/servers/{resource_id}/backups/{snapshot_id}")
        return Snapshot.from_panel(data["attributes"])

    async def create_snapshot(
        self, resource_id: str, name: str
    ) -> PendingOperation[Snapshot, Snapshot]:
        """Request a backup; response carries its id, wait() returns it completed."""

        async def _create() -> Snapshot:
            data = await self._request(
                "POST", f"/servers/{resource_id}/backups", json={"name": name}
            )
            return Snapshot.from_panel(data["attributes"])

        async def _complete(created: Snapshot) -> Snapshot:
            snapshot = await poll_until(
                lambda: self.get_snapshot(resource_id, created.id),
                lambda current: current.completed,
                interval=self.settings.snapshot_poll_interval_seconds,
                timeout=self.settings.snapshot_poll_timeout_seconds,
                description=f"snapshot {created.id} on {resource_id}",
            )
            if not snapshot.successful:
                raise RemoteOperationFailed(
                    f"snapshot {created.id} on {resource_id} completed unsuccessfully"
                )
            return snapshot

        return await issue(_create, _complete)

    async def download_snapshot(self, resource_id: str, snapshot_id: str) -> bytes:
        """Fetch a signed download URL and return the archive content."""
        data = await self._request(
            "GET", f"/servers/{resource_id}/backups/{snapshot_id}/download"
        )
        url = data["attributes"]["url"]
        try:
            response = await self._http.get(url)
        except httpx.HTTPError as exc:
            raise RemoteOperationFailed(
                f"snapshot {snapshot_id} download failed: {exc}"
            ) from exc
        if response.is_error:
            raise RemoteOperationFailed(
                f"snapshot {snapshot_id} download failed: {response.status_code}",
                status_code=response.status_code,
            )
        return response.content

    async def delete_snapshot(self, resource_id: str, snapshot_id: str) -> None:
        await self._request("DELETE", f"/servers/{resource_id}/backups/{snapshot_id}")

    async def toggle_hold(self, resource_id: str, snapshot_id: str) -> None:
        await self._request("POST", f"/servers/{resource_id}/backups/{snapshot_id}/lock")

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def list_files(self, resource_id: str, directory: str = "/") -> list[str]:
        data = await self._request(
            "GET", f"/servers/{resource_id}/files/list", params={"directory": directory}
        )
        return [item["attributes"]["name"] for item in data.get("data", [])]

    async def delete_all_files(self, resource_id: str) -> None:
        """Delete everything in the server's root directory."""
        files = await self.list_files(resource_id)
        if not files:
            return
        await self._request(
            "POST",
            f"/servers/{resource_id}/files/delete",
            json={"root": "/", "files": files},
        )

    # ------------------------------------------------------------------
    # Startup / install
    # ------------------------------------------------------------------

    async def set_startup_variable(self, resource_id: str, key: str, value: str) -> None:
        await self._request(
            "PUT",
            f"/servers/{resource_id}/startup/variable",
            json={"key": key, "value": value},
        )

    async def set_image(self, resource_id: str, image: str) -> None:
        await self._request(
            "PUT",
            f"/servers/{resource_id}/settings/docker-image",
            json={"docker_image": image},
        )

    async def is_installing(self, resource_id: str) -> bool:
        data = await self._request("GET", f"/servers/{resource_id}")
        return bool(data["attributes"].get("is_installing", False))

    async def reinstall(self, resource_id: str) -> PendingOperation[None, None]:
        """Trigger a reinstall; wait() resolves once installation finishes."""

        async def _send() -> None:
            await self._request("POST", f"/servers/{resource_id}/settings/reinstall")

        async def _complete(_: None) -> None:
            await poll_until(
                lambda: self.is_installing(resource_id),
                lambda installing: not installing,
                interval=self.settings.power_poll_interval_seconds,
                timeout=self.settings.reinstall_poll_timeout_seconds,
                description=f"reinstall of {resource_id}",
            )

        return await issue(_send, _complete)

    # ------------------------------------------------------------------
    # Subusers
    # ------------------------------------------------------------------

    async def list_subusers(self, resource_id: str) -> list[Subuser]:
        data = await self._request("GET", f"/servers/{resource_id}/users")
        return [Subuser.from_panel(item["attributes"]) for item in data.get("data", [])]

    async def add_subuser(
        self,
        resource_id: str,
        email: str,
        permissions: tuple[str, ...] = SUBUSER_PERMISSIONS,
    ) -> Subuser:
        data = await self._request(
            "POST",
            f"/servers/{resource_id}/users",
            json={"email": email, "permissions": list(permissions)},
        )
        return Subuser.from_panel(data["attributes"])

    async def remove_subuser(self, resource_id: str, subuser_id: str) -> None:
        await self._request("DELETE", f"/servers/{resource_id}/users/{subuser_id}")
