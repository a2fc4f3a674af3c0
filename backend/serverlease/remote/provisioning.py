"""Baseline reset, wipe and access sequences built from panel primitives."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from .client import PanelClient

logger = logging.getLogger(__name__)

VERSION_VARIABLE = "MINECRAFT_VERSION"
DEFAULT_IMAGE = "ghcr.io/pterodactyl/yolks:java_21"

# (minimum version, image), highest first
_IMAGE_TABLE: tuple[tuple[tuple[int, int, int], str], ...] = (
    ((1, 20, 5), "ghcr.io/pterodactyl/yolks:java_21"),
    ((1, 18, 0), "ghcr.io/pterodactyl/yolks:java_17"),
    ((1, 17, 0), "ghcr.io/pterodactyl/yolks:java_16"),
    ((0, 0, 0), "ghcr.io/pterodactyl/yolks:java_8"),
)

_VERSION_PREFIX = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def _coerce_version(tag: str | None) -> tuple[int, int, int] | None:
    if not tag:
        return None
    match = _VERSION_PREFIX.search(tag)
    if not match:
        return None
    major, minor, patch = (int(part) if part else 0 for part in match.groups())
    return major, minor, patch


def image_for_version(tag: str | None) -> str:
    """Pick the runtime image for a game version; unknown versions get the newest."""
    version = _coerce_version(tag)
    if version is None:
        return DEFAULT_IMAGE
    for minimum, image in _IMAGE_TABLE:
        if version >= minimum:
            return image
    return DEFAULT_IMAGE


class Provisioner:
    """Puts a resource back into a known state.

    Every step is idempotent, so a sequence interrupted by a failure can be
    re-run from the start.
    """

    def __init__(self, client: PanelClient, *, email_domain: str = "panel.local"):
        self.client = client
        self.email_domain = email_domain

    async def reset_to_baseline(self, resource_id: str, version_tag: str | None) -> None:
        """Stop, wipe, configure version and image, reinstall; returns when installed."""
        logger.info("resetting %s to baseline version=%s", resource_id, version_tag or "latest")
        stop = await self.client.power(resource_id, "stop")
        await stop.wait()

        await self.client.delete_all_files(resource_id)

        if version_tag:
            await self.client.set_startup_variable(resource_id, VERSION_VARIABLE, version_tag)
        await self.client.set_image(resource_id, image_for_version(version_tag))

        reinstall = await self.client.reinstall(resource_id)
        await reinstall.wait()
        logger.info("baseline reset of %s complete", resource_id)

    async def wipe(self, resource_id: str) -> None:
        """Delete every file on the resource without reinstalling."""
        await self.client.delete_all_files(resource_id)
        logger.info("wiped files on %s", resource_id)

    def email_for(self, principal: str) -> str:
        """Panel account email for a collaborator principal id."""
        principal = principal.strip()
        if "@" in principal:
            return principal.lower()
        return f"{principal}@{self.email_domain}".lower()

    async def grant_access(self, resource_id: str, principals: Iterable[str]) -> None:
        """Make the resource's subusers exactly ``principals`` plus any admins."""
        wanted = {self.email_for(principal) for principal in principals}
        current = await self.client.list_subusers(resource_id)
        present = {subuser.email.lower() for subuser in current}

        for subuser in current:
            if subuser.email.lower() in wanted or subuser.is_admin:
                continue
            await self.client.remove_subuser(resource_id, subuser.id)
            logger.info("removed stale subuser %s from %s", subuser.email, resource_id)

        for email in sorted(wanted - present):
            await self.client.add_subuser(resource_id, email)
            logger.info("granted %s access to %s", email, resource_id)

    async def revoke_access(self, resource_id: str, principals: Iterable[str]) -> None:
        """Remove the given principals' subuser accounts; absent ones are skipped."""
        revoked = {self.email_for(principal) for principal in principals}
        for subuser in await self.client.list_subusers(resource_id):
            if subuser.email.lower() not in revoked:
                continue
            await self.client.remove_subuser(resource_id, subuser.id)
            logger.info("revoked %s access to %s", subuser.email, resource_id)
