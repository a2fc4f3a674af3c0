"""RcloneTransport command construction and failure handling."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from serverlease.archive.transport import RcloneTransport
from serverlease.errors import RemoteOperationFailed


def _process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> AsyncMock:
    process = AsyncMock()
    process.communicate.return_value = (stdout, stderr)
    process.returncode = returncode
    return process


@pytest.mark.asyncio
async def test_upload_with_name_uses_copyto():
    transport = RcloneTransport("rclone", "gdrive:Archives/")
    with patch(
        "serverlease.archive.transport.asyncio.create_subprocess_exec",
        AsyncMock(return_value=_process()),
    ) as spawn:
        remote = await transport.upload(Path("/tmp/x.tar.gz"), "2026/f", remote_name="[a]_b.tar.gz")

    assert spawn.await_args.args == (
        "rclone",
        "copyto",
        "/tmp/x.tar.gz",
        "gdrive:Archives/2026/f/[a]_b.tar.gz",
    )
    assert remote == "gdrive:Archives/2026/f/[a]_b.tar.gz"


@pytest.mark.asyncio
async def test_list_folders_keeps_second_level_only():
    listing = b"2025/\n2025/2025-03-01_ID1_[a]_x-hosted/\n2026/\n2026/2026-07-04_ID7_[b]_y-hosted/\n"
    transport = RcloneTransport("rclone", "gdrive:Archives")
    with patch(
        "serverlease.archive.transport.asyncio.create_subprocess_exec",
        AsyncMock(return_value=_process(stdout=listing)),
    ):
        folders = await transport.list_folders()

    assert folders == [
        "2025/2025-03-01_ID1_[a]_x-hosted",
        "2026/2026-07-04_ID7_[b]_y-hosted",
    ]


@pytest.mark.asyncio
async def test_non_zero_exit_raises():
    transport = RcloneTransport("rclone", "gdrive:Archives")
    with patch(
        "serverlease.archive.transport.asyncio.create_subprocess_exec",
        AsyncMock(return_value=_process(stderr=b"quota exceeded", returncode=7)),
    ):
        with pytest.raises(RemoteOperationFailed, match="quota exceeded"):
            await transport.share_link("2026/f")


@pytest.mark.asyncio
async def test_missing_binary_raises():
    transport = RcloneTransport("/nope/rclone", "gdrive:Archives")
    with patch(
        "serverlease.archive.transport.asyncio.create_subprocess_exec",
        AsyncMock(side_effect=FileNotFoundError("/nope/rclone")),
    ):
        with pytest.raises(RemoteOperationFailed):
            await transport.list_folders()
