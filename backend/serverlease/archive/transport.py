"""Durable archive transports: an rclone remote or a local directory."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Protocol

from ..errors import RemoteOperationFailed

logger = logging.getLogger(__name__)


class ArchiveTransport(Protocol):
    async def upload(
        self, local_path: Path, remote_folder: str, *, remote_name: str | None = None
    ) -> str:
        """Copy ``local_path`` under ``remote_folder``; return the remote path."""

    async def list_folders(self) -> list[str]:
        """Return archive folders as ``YYYY/<folder>`` paths."""

    async def share_link(self, remote_path: str) -> str:
        """Return a shareable link for an archived path."""


class RcloneTransport:
    """Shells out to rclone for uploads, listings and share links."""

    def __init__(self, rclone_path: str, base_path: str):
        self.rclone_path = rclone_path
        self.base_path = base_path.rstrip("/")

    def _remote(self, path: str) -> str:
        return f"{self.base_path}/{path.strip('/')}"

    async def _run(self, *args: str) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self.rclone_path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("unable to launch rclone at %s: %s", self.rclone_path, exc)
            raise RemoteOperationFailed(f"unable to launch rclone: {exc}") from exc
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            logger.error("rclone %s failed (exit %s): %s", args[0], process.returncode, detail)
            raise RemoteOperationFailed(
                f"rclone {args[0]} failed with exit code {process.returncode}: {detail}"
            )
        return stdout.decode("utf-8", errors="replace")

    async def upload(
        self, local_path: Path, remote_folder: str, *, remote_name: str | None = None
    ) -> str:
        if remote_name:
            destination = self._remote(f"{remote_folder}/{remote_name}")
            await self._run("copyto", str(local_path), destination)
        else:
            destination = self._remote(remote_folder)
            await self._run("copy", str(local_path), destination)
            destination = f"{destination}/{Path(local_path).name}"
        logger.info("uploaded %s to %s", Path(local_path).name, destination)
        return destination

    async def list_folders(self) -> list[str]:
        output = await self._run(
            "lsf", "--dirs-only", "--recursive", "--max-depth", "2", self.base_path
        )
        folders = [line.strip().rstrip("/") for line in output.splitlines()]
        return sorted(folder for folder in folders if "/" in folder)

    async def share_link(self, remote_path: str) -> str:
        return (await self._run("link", self._remote(remote_path))).strip()


class LocalDirectoryTransport:
    """Copies archives into a directory on this host."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    async def upload(
        self, local_path: Path, remote_folder: str, *, remote_name: str | None = None
    ) -> str:
        destination = self.base_dir / remote_folder / (remote_name or Path(local_path).name)
        try:
            await asyncio.to_thread(self._copy, Path(local_path), destination)
        except OSError as exc:
            logger.error("local archive copy to %s failed: %s", destination, exc)
            raise RemoteOperationFailed(f"archive copy to {destination} failed: {exc}") from exc
        logger.info("archived %s to %s", Path(local_path).name, destination)
        return str(destination)

    @staticmethod
    def _copy(source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)

    async def list_folders(self) -> list[str]:
        if not self.base_dir.exists():
            return []
        return sorted(
            f"{year.name}/{folder.name}"
            for year in self.base_dir.iterdir()
            if year.is_dir()
            for folder in year.iterdir()
            if folder.is_dir()
        )

    async def share_link(self, remote_path: str) -> str:
        return (self.base_dir / remote_path).resolve().as_uri()
