"""Snapshot archival to durable storage."""

from .naming import ArchiveName, sanitize_path_part
from .orchestrator import ArchiveOrchestrator, ArchiveReport, eviction_candidates
from .transport import ArchiveTransport, LocalDirectoryTransport, RcloneTransport

__all__ = [
    "ArchiveName",
    "ArchiveOrchestrator",
    "ArchiveReport",
    "ArchiveTransport",
    "LocalDirectoryTransport",
    "RcloneTransport",
    "eviction_candidates",
    "sanitize_path_part",
]
